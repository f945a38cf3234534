"""Async client for the RouterOS REST API (simple queues)."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from .models.traffic import QueueInfo

logger = logging.getLogger(__name__)

_QUEUE_PATH = "/rest/queue/simple"
_IDENTITY_PATH = "/rest/system/identity"


class RouterError(RuntimeError):
    """Router could not be reached or answered with an error."""


class RouterClient:
    """Fetch simple-queue rates from a MikroTik router.

    Every call is bounded by ``timeout`` and retried with exponential backoff
    (``min(backoff_base_s * 2 ** attempt, backoff_max_s)``) up to
    ``max_retries`` attempts before ``RouterError`` is raised.
    """

    def __init__(
        self,
        host: str,
        user: str,
        password: str,
        port: int | None = None,
        scheme: str = "https",
        verify_tls: bool = False,
        timeout: float = 20.0,
        max_retries: int = 3,
        backoff_base_s: float = 1.0,
        backoff_max_s: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        port_part = f":{port}" if port else ""
        self.base_url = f"{scheme}://{host}{port_part}"
        self.host = host
        self._auth = (user, password)
        self.verify_tls = verify_tls
        self.timeout = timeout
        self.max_retries = max(1, int(max_retries))
        self.backoff_base_s = backoff_base_s
        self.backoff_max_s = backoff_max_s
        self._transport = transport
        self.error_count = 0

    def _backoff(self, attempt: int) -> float:
        return min(self.backoff_base_s * (2**attempt), self.backoff_max_s)

    async def _get_json(self, path: str, attempts: int | None = None) -> Any:
        url = f"{self.base_url}{path}"
        attempts = self.max_retries if attempts is None else max(1, attempts)
        last_exc: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                async with httpx.AsyncClient(
                    auth=self._auth,
                    timeout=self.timeout,
                    verify=self.verify_tls,
                    transport=self._transport,
                ) as client:
                    response = await client.get(url)
                    response.raise_for_status()
                    return response.json()
            except (httpx.HTTPError, ValueError) as exc:
                last_exc = exc
                self.error_count += 1
                if attempt >= attempts:
                    break
                delay = self._backoff(attempt)
                logger.warning(
                    "Router request failed (attempt %s/%s, retry in %.1fs): %s",
                    attempt,
                    attempts,
                    delay,
                    exc,
                )
                await asyncio.sleep(delay)
        logger.error(
            "Router request %s failed after %s attempts: %s",
            path,
            attempts,
            last_exc,
        )
        raise RouterError(f"Router request failed: {last_exc}") from last_exc

    async def list_queues(self) -> list[QueueInfo]:
        data = await self._get_json(_QUEUE_PATH)
        if not isinstance(data, list):
            raise RouterError("Unexpected queue list payload")
        queues: list[QueueInfo] = []
        for item in data:
            if not isinstance(item, dict):
                continue
            name = item.get("name")
            if not name:
                continue
            queues.append(
                QueueInfo(
                    name=str(name),
                    rate=item.get("rate"),
                    target=item.get("target"),
                )
            )
        logger.debug("Fetched %s queues from %s", len(queues), self.host)
        return queues

    async def identity(self, retry: bool = True) -> str:
        """Router identity name; ``retry=False`` makes a single bounded attempt."""
        data = await self._get_json(_IDENTITY_PATH, attempts=None if retry else 1)
        if isinstance(data, dict):
            return str(data.get("name") or "")
        return ""
