"""
Session identity resolution.

Priority: session header, then session cookie, then a freshly minted UUID4
(which is the only case where the response must set the cookie).

The identifier is opaque and not validated: whoever presents a session key
gets that session's history.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from starlette.responses import Response

from cantor.config import SessionSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionIdentity:
    id: str
    should_issue_cookie: bool


def resolve_session(
    headers: Mapping[str, str],
    cookies: Mapping[str, str],
    settings: SessionSettings,
) -> SessionIdentity:
    header_value = headers.get(settings.header)
    if header_value:
        return SessionIdentity(header_value, should_issue_cookie=False)

    cookie_value = cookies.get(settings.cookie)
    if cookie_value:
        return SessionIdentity(cookie_value, should_issue_cookie=False)

    session_id = str(uuid4())
    logger.debug("Minted new session %s", session_id)
    return SessionIdentity(session_id, should_issue_cookie=True)


def set_session_cookie(
    response: Response,
    session_id: str,
    settings: SessionSettings,
    secure: bool = False,
):
    """Attach the session cookie (Path=/, SameSite=Lax, Secure on HTTPS)."""
    expires = datetime.now(timezone.utc) + timedelta(days=settings.cookie_max_age_days)
    response.set_cookie(
        key=settings.cookie,
        value=session_id,
        expires=expires,
        path="/",
        samesite="lax",
        secure=secure,
    )
