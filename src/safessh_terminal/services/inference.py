"""HTTP client for an Ollama-compatible inference backend."""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from safessh_terminal import __version__
from safessh_terminal.errors import ClassifierError

logger = logging.getLogger(__name__)


class InferenceBackend(Protocol):
    async def list_models(self) -> list[str]: ...

    async def generate(self, model: str, prompt: str, stream: bool = False) -> str: ...


class OllamaClient:
    """Minimal async client for the ``/api/tags`` and ``/api/generate`` endpoints."""

    def __init__(self, host: str = "http://localhost:11434", timeout: float = 30.0) -> None:
        self.host = host.rstrip("/")
        self.timeout = timeout
        self._http_client: httpx.AsyncClient | None = None

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.host,
                headers={
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                    "User-Agent": f"safessh-terminal/{__version__}",
                },
                timeout=self.timeout,
            )
        return self._http_client

    async def list_models(self) -> list[str]:
        """Names of the models installed on the backend."""
        try:
            response = await self._get_http_client().get("/api/tags")
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ClassifierError(f"Failed to list models: {e}") from e

        models = data.get("models") if isinstance(data, dict) else None
        if not isinstance(models, list):
            raise ClassifierError("Malformed model list from inference backend")
        return [m["name"] for m in models if isinstance(m, dict) and isinstance(m.get("name"), str)]

    async def generate(self, model: str, prompt: str, stream: bool = False) -> str:
        """Run a single non-streaming completion and return the response text."""
        payload = {"model": model, "prompt": prompt, "stream": stream}
        try:
            response = await self._get_http_client().post("/api/generate", json=payload)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ClassifierError(f"Generate request to {model} failed: {e}") from e

        text = data.get("response") if isinstance(data, dict) else None
        if not isinstance(text, str):
            raise ClassifierError(f"Malformed response from {model}")
        return text

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
