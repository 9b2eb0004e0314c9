"""
Shared fixtures: a temp SQLite store and a scripted in-process backend.
"""

import asyncio

import pytest

from cantor.backends.base import BaseBackend, BackendResponse
from cantor.storage.sqlite_store import SQLiteStore


class FakeBackend(BaseBackend):
    """Records every call; answers with a numbered reply or fails on demand."""

    def __init__(self, fail: bool = False, data=None, delay: float = 0.0):
        super().__init__("fake", "http://fake")
        self.fail = fail
        self.data = data
        self.delay = delay
        self.calls: list[tuple[str, dict]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def run(self, model: str, body: dict) -> BackendResponse:
        self.calls.append((model, body))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail:
                return BackendResponse(ok=False, backend_name=self.name, error="HTTP 500: boom")
            data = self.data if self.data is not None else {"response": f"reply {len(self.calls)}"}
            return BackendResponse(ok=True, backend_name=self.name, data=data)
        finally:
            self.in_flight -= 1


@pytest.fixture
def store(tmp_path):
    """Create a fresh SQLite store for each test."""
    return SQLiteStore(str(tmp_path / "test.db"))


@pytest.fixture
def backend():
    return FakeBackend()
