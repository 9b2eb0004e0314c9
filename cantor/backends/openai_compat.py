"""
Generic OpenAI-compatible backend.

Supports any endpoint that speaks the OpenAI chat completions format:
- Ollama
- llama.cpp server
- vLLM
- LocalAI
"""

from __future__ import annotations

import logging
import time

import httpx

from cantor.backends.base import BaseBackend, BackendResponse

logger = logging.getLogger(__name__)


class OpenAICompatibleBackend(BaseBackend):
    """
    Generic backend for OpenAI-compatible endpoints.

    The first choice's message content is surfaced as {"response": ...} so it
    goes through the same text extraction as every other provider.
    """

    def __init__(
        self,
        name: str,
        url: str,
        timeout: int = 120,
        api_key: str = "",
    ):
        super().__init__(name, url, timeout)
        self.api_key = api_key

    async def run(self, model: str, body: dict) -> BackendResponse:
        t0 = time.monotonic()
        try:
            headers = {}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"

            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    f"{self.url}/v1/chat/completions",
                    json={"model": model, **body},
                    headers=headers,
                )
                latency = (time.monotonic() - t0) * 1000

                if resp.status_code >= 400:
                    return BackendResponse(
                        ok=False,
                        status_code=resp.status_code,
                        backend_name=self.name,
                        latency_ms=latency,
                        error=f"HTTP {resp.status_code}: {resp.text[:200]}",
                    )

                data = resp.json()
                choices = data.get("choices") or []
                content = ""
                if choices:
                    content = (choices[0].get("message") or {}).get("content") or ""
                return BackendResponse(
                    ok=True,
                    status_code=resp.status_code,
                    data={"response": content},
                    backend_name=self.name,
                    latency_ms=latency,
                )
        except httpx.TimeoutException:
            latency = (time.monotonic() - t0) * 1000
            logger.warning(
                "OpenAI-compatible backend '%s' timed out after %.0fms",
                self.name,
                latency,
            )
            return BackendResponse(
                ok=False,
                backend_name=self.name,
                latency_ms=latency,
                error=f"Timeout after {self.timeout}s",
            )
        except Exception as e:
            latency = (time.monotonic() - t0) * 1000
            logger.warning(
                "OpenAI-compatible backend '%s' failed: %s", self.name, e
            )
            return BackendResponse(
                ok=False,
                backend_name=self.name,
                latency_ms=latency,
                error=str(e),
            )
