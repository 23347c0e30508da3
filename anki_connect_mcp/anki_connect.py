from typing import Any, Optional
import logging
import os

import httpx

logger = logging.getLogger('anki_connect_mcp')

DEFAULT_URL = "http://localhost:8765"
API_VERSION = 6


class AnkiConnectError(Exception):
    """Raised when AnkiConnect reports an error or cannot be reached."""

    def __init__(self, action: str, message: str):
        super().__init__(f"AnkiConnect action '{action}' failed: {message}")
        self.action = action
        self.message = message


class AnkiConnectClient:
    """Thin async client for the AnkiConnect HTTP API.

    Every call posts ``{"action", "version", "params"}`` to the endpoint and
    unwraps the ``{"result", "error"}`` envelope. Nothing is retried.
    """

    def __init__(self, url: str = DEFAULT_URL, timeout: float = 30.0,
                 client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_env(cls) -> "AnkiConnectClient":
        """Build a client from ANKI_CONNECT_URL and ANKI_CONNECT_TIMEOUT"""
        url = os.getenv("ANKI_CONNECT_URL", DEFAULT_URL)
        timeout = float(os.getenv("ANKI_CONNECT_TIMEOUT", "30"))
        return cls(url, timeout=timeout)

    async def invoke(self, action: str, **params: Any) -> Any:
        """Run a single AnkiConnect action and return its result.

        Args:
            action: AnkiConnect action name, e.g. ``deckNames``
            **params: Parameters forwarded verbatim

        Raises:
            AnkiConnectError: if the request fails or AnkiConnect returns an error
        """
        payload = {"action": action, "version": API_VERSION, "params": params}
        logger.debug(f"AnkiConnect request: {action} {params}")
        try:
            response = await self._client.post(self.url, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"AnkiConnect unreachable at {self.url}: {str(e)}")
            raise AnkiConnectError(action, f"request to {self.url} failed: {e}") from e
        except ValueError as e:
            raise AnkiConnectError(action, "response is not valid JSON") from e

        if not isinstance(data, dict) or "result" not in data or "error" not in data:
            raise AnkiConnectError(action, "response is missing required fields")
        if data["error"] is not None:
            logger.error(f"AnkiConnect returned error for {action}: {data['error']}")
            raise AnkiConnectError(action, data["error"])
        return data["result"]

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "AnkiConnectClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
