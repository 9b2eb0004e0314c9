"""
Conversation memory: one owner object per session.

Each ConversationMemory holds the cached log for a single session key and an
asyncio.Lock. Every operation takes the lock, so at most one read or mutation
runs against a session at a time, and the initial load from storage happens
under the same lock (anything issued while loading waits for it).

Sessions never share a ConversationMemory, and nothing mutable is shared
between them, so different sessions proceed concurrently.

    registry = MemoryRegistry(store, backend, settings)
    memory = registry.get(session_id)
    result = await memory.submit_turn("What is a fugue?", topic="counterpoint")
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import threading
import weakref
from enum import Enum

from cantor.backends.base import BaseBackend
from cantor.config import ChatSettings
from cantor.errors import MethodNotAllowed, MissingMessage, UpstreamModelError
from cantor.extraction import extract_reply
from cantor.prompts import UPSTREAM_FAILURE_MESSAGE, build_mock_reply, build_prompt
from cantor.storage.models import Message, now_ms, trim
from cantor.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)


class MemoryState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"


class ConversationMemory:
    """Owns and serializes access to one session's conversation log."""

    def __init__(
        self,
        session_id: str,
        store: SQLiteStore,
        backend: BaseBackend | None,
        settings: ChatSettings,
    ):
        self.session_id = session_id
        self.store = store
        self.backend = backend
        self.settings = settings
        self.state = MemoryState.UNINITIALIZED
        self._history: list[Message] = []
        self._lock = asyncio.Lock()

    def _ensure_loaded(self):
        """Load the persisted log on first activation. Caller holds the lock."""
        if self.state is MemoryState.READY:
            return
        self.state = MemoryState.LOADING
        try:
            stored = self.store.get(self.session_id)
        except Exception:
            self.state = MemoryState.UNINITIALIZED
            raise
        self._history = stored or []
        self.state = MemoryState.READY
        logger.debug(
            "Session %s activated with %d stored messages",
            self.session_id, len(self._history),
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def get_history(self) -> list[Message]:
        async with self._lock:
            self._ensure_loaded()
            return list(self._history)

    async def submit_turn(self, message: str, topic: str | None = None) -> dict:
        """
        Run one chat turn and persist it.

        Returns {"reply": str, "history": list[Message]}.
        Raises MissingMessage for an empty message and UpstreamModelError when
        the model call fails; in both cases the log is left untouched.
        """
        if not message:
            raise MissingMessage()

        async with self._lock:
            self._ensure_loaded()

            limit = self.settings.history_limit
            # Reserve two slots for the pair added below.
            context = trim(self._history, limit - 2)

            if self.settings.mock:
                reply = build_mock_reply(message, topic)
            else:
                reply = await self._generate(context, message, topic)

            now = now_ms()
            updated = trim(
                [
                    *context,
                    Message(role="user", content=message, timestamp=now),
                    Message(role="assistant", content=reply, timestamp=now),
                ],
                limit,
            )

            self.store.put(self.session_id, updated)
            self._history = updated
            logger.info(
                "Session %s: turn stored (%d messages)", self.session_id, len(updated)
            )
            return {"reply": reply, "history": list(updated)}

    async def _generate(self, context: list[Message], message: str, topic: str | None) -> str:
        if self.backend is None:
            raise UpstreamModelError(UPSTREAM_FAILURE_MESSAGE, "No model backend configured")

        body = {
            "messages": build_prompt(self.settings.persona, context, message, topic),
            "temperature": self.settings.temperature,
            "max_tokens": self.settings.max_tokens,
        }
        response = await self.backend.run(self.settings.model, body)
        if not response.ok:
            logger.error(
                "Model call failed for session %s (%s): %s",
                self.session_id, self.settings.model, response.error,
            )
            raise UpstreamModelError(UPSTREAM_FAILURE_MESSAGE, response.error)

        logger.debug(
            "Backend '%s' answered in %.0fms", response.backend_name, response.latency_ms
        )
        return extract_reply(response.data)

    # ------------------------------------------------------------------
    # Message interface
    # ------------------------------------------------------------------

    async def handle(self, method: str, payload: dict | None = None) -> dict:
        """
        Verb-addressed entry point used by the HTTP edge.
        GET returns the history, POST runs a turn; anything else is refused.
        """
        method = method.upper()
        if method == "GET":
            history = await self.get_history()
            return {"history": [m.to_dict() for m in history]}
        if method == "POST":
            payload = payload or {}
            result = await self.submit_turn(payload.get("message") or "", payload.get("topic"))
            return {
                "reply": result["reply"],
                "history": [m.to_dict() for m in result["history"]],
            }
        raise MethodNotAllowed()


class MemoryRegistry:
    """
    Routes session keys to their ConversationMemory.
    Instances are addressed by a SHA-256 digest of the key, so identical keys
    always land on the same owner.

    The registry only holds weak references. A request in flight keeps its
    owner alive, so a key never has two live owners at once; idle owners are
    collected and the next activation reloads the log from the store.
    """

    def __init__(
        self,
        store: SQLiteStore,
        backend: BaseBackend | None,
        settings: ChatSettings,
    ):
        self.store = store
        self.backend = backend
        self.settings = settings
        self._instances: weakref.WeakValueDictionary[str, ConversationMemory] = (
            weakref.WeakValueDictionary()
        )
        self._lock = threading.Lock()

    @staticmethod
    def instance_id(session_id: str) -> str:
        return hashlib.sha256(session_id.encode("utf-8")).hexdigest()

    def get(self, session_id: str) -> ConversationMemory:
        key = self.instance_id(session_id)
        with self._lock:
            memory = self._instances.get(key)
            if memory is None:
                memory = ConversationMemory(session_id, self.store, self.backend, self.settings)
                self._instances[key] = memory
            return memory

    def __len__(self) -> int:
        with self._lock:
            return len(self._instances)
