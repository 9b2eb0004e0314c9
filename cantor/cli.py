#!/usr/bin/env python3
"""
Cantor CLI.

Every command has a short name and standard aliases:

    COMMAND         ALIASES         WHAT IT DOES
    -------         -------         ----------------------------------
    serve           start, up       Start the Cantor server
    history         show            Print one session's stored log
    dump            export          Export every session to JSON
    sessions        list            List recent sessions
    flash           stats, info     Config and storage stats
    ring            status, ping    Check a running instance
    tone            banner          Print the banner
"""

import argparse
import json
import sys

__version__ = "1.0.0"

BANNER = r"""
    ╔══════════════════════════════════════════════╗
    ║                                              ║
    ║    C A N T O R                               ║
    ║    a Baroque study partner                   ║
    ║    with a short memory.          v""" + __version__ + r"""      ║
    ║                                              ║
    ╚══════════════════════════════════════════════╝
"""


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_serve(args):
    """Start the Cantor server."""
    import uvicorn
    from cantor.config import get_chat_settings, get_config

    cfg = get_config()
    settings = get_chat_settings(cfg)
    host = args.host or cfg.get("server", {}).get("host", "0.0.0.0")
    port = args.port or cfg.get("server", {}).get("port", 8000)

    print(BANNER)
    print(f"  Listening on {host}:{port}")
    print(f"  Model: {settings.model}{'  (mock replies)' if settings.mock else ''}")
    print()

    uvicorn.run(
        "cantor.main:app",
        host=host,
        port=port,
        reload=args.reload,
        log_level="info",
    )


def _open_store():
    from cantor.config import get_config
    from cantor.storage.sqlite_store import SQLiteStore

    cfg = get_config()
    return SQLiteStore(cfg.get("storage", {}).get("sqlite_path", "./data/cantor.db"))


def cmd_history(args):
    """Print one session's stored conversation log."""
    store = _open_store()
    history = store.get(args.session)
    if history is None:
        print(f"  ✗  No stored history for session {args.session}")
        return 1

    if args.json:
        print(json.dumps([m.to_dict() for m in history], indent=2, ensure_ascii=False))
        return 0

    for m in history:
        speaker = "you " if m.role == "user" else "bach"
        print(f"  [{speaker}] {m.content}")
        print()
    return 0


def cmd_dump(args):
    """Export every stored session to a JSON file."""
    store = _open_store()
    data = store.export_all()
    with open(args.output, "w") as f:
        json.dump(data, f, indent=2 if args.pretty else None, ensure_ascii=False)
    print(f"  ✓  Exported {len(data)} sessions to {args.output}")
    return 0


def cmd_sessions(args):
    """List the most recently active sessions."""
    store = _open_store()
    sessions = store.list_sessions(limit=args.limit)
    if not sessions:
        print("  No sessions stored yet.")
        return 0

    print(f"  {'SESSION':<38} {'MESSAGES':>8}  UPDATED")
    for s in sessions:
        print(f"  {s['id']:<38} {s['message_count']:>8}  {s['updated_at']}")
    return 0


def cmd_flash(args):
    """Show configuration and storage stats at a glance."""
    from cantor.config import get_chat_settings, get_config

    cfg = get_config()
    settings = get_chat_settings(cfg)
    sqlite_path = cfg.get("storage", {}).get("sqlite_path", "./data/cantor.db")

    print(BANNER)
    print("  Configuration")
    print(f"  ├─ Backend:   {cfg.get('backend', {}).get('type', 'workers_ai')}")
    print(f"  ├─ Model:     {settings.model}")
    print(f"  ├─ History:   {settings.history_limit} messages")
    print(f"  ├─ Mock:      {settings.mock}")
    print(f"  └─ SQLite:    {sqlite_path}")

    stats = _open_store().get_stats()
    print()
    print("  Storage")
    print(f"  ├─ Sessions:   {stats['sessions']}")
    print(f"  ├─ Messages:   {stats['messages']}")
    print(f"  ├─ User msgs:  {stats['user_messages']}")
    print(f"  └─ Bach msgs:  {stats['assistant_messages']}")
    return 0


def cmd_ring(args):
    """Check a running Cantor instance by fetching a session's history."""
    import httpx
    from cantor.config import get_session_settings

    url = (args.url or "http://localhost:8000").rstrip("/")
    headers = {get_session_settings().header: args.session} if args.session else {}
    try:
        resp = httpx.get(f"{url}/api/history", headers=headers, timeout=5)
        if resp.status_code == 200:
            history = resp.json().get("history", [])
            print(f"  ♪  {url} is UP")
            if args.session:
                print(f"  💬 Session {args.session}: {len(history)} messages")
            return 0
        print(f"  ✗  No answer, got HTTP {resp.status_code}")
    except httpx.ConnectError:
        print(f"  ✗  Silence, nothing at {url}")
    except httpx.HTTPError as e:
        print(f"  ✗  Error: {e}")
    return 1


def cmd_tone(args):
    """Print the banner."""
    print(BANNER)
    return 0


# ---------------------------------------------------------------------------
# Parser with aliases
# ---------------------------------------------------------------------------

def _add_command(subparsers, names, help_text, func, setup_fn=None):
    """Register a command under multiple names."""
    p = subparsers.add_parser(names[0], help=help_text, aliases=names[1:])
    p.set_defaults(func=func)
    if setup_fn:
        setup_fn(p)
    return p


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cantor",
        description="Cantor: a Baroque study partner with a short memory.",
        epilog="Run 'cantor <command> --help' for command-specific options.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version", "-V", action="version",
        version=f"cantor {__version__}",
    )

    sub = parser.add_subparsers(dest="command", metavar="<command>")

    def setup_serve(p):
        p.add_argument("--host", default=None, help="Override listen host")
        p.add_argument("--port", "-p", type=int, default=None, help="Override listen port")
        p.add_argument("--reload", action="store_true", help="Auto-reload on code changes (dev)")

    _add_command(sub, ["serve", "start", "up"],
                 "Start the Cantor server", cmd_serve, setup_serve)

    def setup_history(p):
        p.add_argument("session", help="Session id (the bach_session cookie value)")
        p.add_argument("--json", action="store_true", help="Raw JSON output")

    _add_command(sub, ["history", "show"],
                 "Print one session's stored log", cmd_history, setup_history)

    def setup_dump(p):
        p.add_argument("--output", "-o", default="sessions_export.json", help="Output file")
        p.add_argument("--pretty", action="store_true", help="Pretty-print JSON")

    _add_command(sub, ["dump", "export"],
                 "Export every session to JSON", cmd_dump, setup_dump)

    def setup_sessions(p):
        p.add_argument("--limit", "-n", type=int, default=20, help="How many sessions to show")

    _add_command(sub, ["sessions", "list"],
                 "List recent sessions", cmd_sessions, setup_sessions)

    _add_command(sub, ["flash", "stats", "info"],
                 "Config and storage stats", cmd_flash)

    def setup_ring(p):
        p.add_argument("--url", "-u", default=None, help="Cantor URL (default: http://localhost:8000)")
        p.add_argument("--session", "-s", default=None, help="Session id to report on")

    _add_command(sub, ["ring", "status", "ping"],
                 "Check a running Cantor instance", cmd_ring, setup_ring)

    _add_command(sub, ["tone", "banner"], "Print the banner", cmd_tone)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        cmd_tone(args)
        parser.print_help()
        return 0

    return args.func(args) or 0


if __name__ == "__main__":
    sys.exit(main())
