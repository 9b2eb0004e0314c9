"""
Cloudflare Workers AI backend.

Calls the REST endpoint
    POST {url}/accounts/{account_id}/ai/run/{model}
with a bearer token. The envelope is {"success", "errors", "result"}; the
`result` payload is handed back untouched for text extraction.
"""

from __future__ import annotations

import logging
import time

import httpx

from cantor.backends.base import BaseBackend, BackendResponse

logger = logging.getLogger(__name__)

DEFAULT_URL = "https://api.cloudflare.com/client/v4"


class WorkersAIBackend(BaseBackend):
    """Backend for Cloudflare Workers AI models (e.g. @cf/meta/llama-3.1-8b-instruct)."""

    def __init__(
        self,
        name: str = "workers_ai",
        url: str = DEFAULT_URL,
        timeout: int = 120,
        account_id: str = "",
        api_key: str = "",
    ):
        super().__init__(name, url or DEFAULT_URL, timeout)
        self.account_id = account_id
        self.api_key = api_key

    def _endpoint(self, model: str) -> str:
        return f"{self.url}/accounts/{self.account_id}/ai/run/{model}"

    @staticmethod
    def _envelope_error(data: dict) -> str:
        errors = data.get("errors") or []
        messages = [
            e.get("message", str(e)) if isinstance(e, dict) else str(e)
            for e in errors
        ]
        return "; ".join(messages) or "Workers AI reported success=false"

    async def run(self, model: str, body: dict) -> BackendResponse:
        t0 = time.monotonic()
        try:
            headers = {}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"

            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    self._endpoint(model),
                    json=body,
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
                if isinstance(data, dict) and data.get("success") is False:
                    return BackendResponse(
                        ok=False,
                        status_code=resp.status_code,
                        backend_name=self.name,
                        latency_ms=latency,
                        error=self._envelope_error(data),
                    )

                result = data.get("result", data) if isinstance(data, dict) else data
                return BackendResponse(
                    ok=True,
                    status_code=resp.status_code,
                    data=result,
                    backend_name=self.name,
                    latency_ms=latency,
                )
        except httpx.TimeoutException:
            latency = (time.monotonic() - t0) * 1000
            logger.warning(
                "Workers AI backend '%s' timed out after %.0fms", self.name, latency
            )
            return BackendResponse(
                ok=False, backend_name=self.name, latency_ms=latency,
                error=f"Timeout after {self.timeout}s",
            )
        except Exception as e:
            latency = (time.monotonic() - t0) * 1000
            logger.warning("Workers AI backend '%s' failed: %s", self.name, e)
            return BackendResponse(
                ok=False, backend_name=self.name, latency_ms=latency,
                error=str(e),
            )
