"""
Base backend abstraction.
All model backends implement this interface so the memory manager can treat
them uniformly.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class BackendResponse:
    """Standardized response from any backend."""
    ok: bool
    status_code: int = 200
    data: Any = None         # provider-defined result payload
    backend_name: str = ""
    latency_ms: float = 0.0
    error: str = ""


class BaseBackend(abc.ABC):
    """
    Abstract base for language-model backends.
    A backend runs one generation call and reports success or failure through
    BackendResponse; transport errors never escape as exceptions.
    """

    def __init__(self, name: str, url: str, timeout: int = 120):
        self.name = name
        self.url = url.rstrip("/")
        self.timeout = timeout

    @abc.abstractmethod
    async def run(self, model: str, body: dict) -> BackendResponse:
        """
        Run a single generation.
        Body is {"messages": [{role, content}], "temperature", "max_tokens"}.
        """
        ...

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r} url={self.url!r}>"
