"""
Model backends and the factory that picks one from config.

    backend:
      type: workers_ai        # or openai_compat

`make_backend(type, **kwargs)` looks the type up in _REGISTRY and passes the
remaining `backend:` settings to the constructor. A new provider is a
BaseBackend subclass plus one registry entry.
"""

from cantor.backends.base import BaseBackend, BackendResponse
from cantor.backends.openai_compat import OpenAICompatibleBackend
from cantor.backends.workers_ai import WorkersAIBackend

_REGISTRY: dict[str, type[BaseBackend]] = {
    "workers_ai": WorkersAIBackend,
    "openai_compat": OpenAICompatibleBackend,
}


def make_backend(backend_type: str, **kwargs) -> BaseBackend:
    """Build the backend registered as `backend_type`; ValueError if there is none."""
    try:
        cls = _REGISTRY[backend_type]
    except KeyError:
        raise ValueError(
            f"Unknown model backend: '{backend_type}' (known: {sorted(_REGISTRY)})"
        ) from None
    return cls(**kwargs)


__all__ = [
    "BaseBackend",
    "BackendResponse",
    "OpenAICompatibleBackend",
    "WorkersAIBackend",
    "make_backend",
]
