# src/annobroker/adapters/http_transport.py
from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Set

import httpx

from annobroker.adapters.transport import OnError, OnSuccess

log = logging.getLogger(__name__)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded; charset=UTF-8"


@dataclass
class HttpTransportConfig:
    timeout: float = 30.0
    headers: Dict[str, str] = field(default_factory=dict)


class HttpTransport:
    """
    POST each request as its own asyncio task on the running loop.

    send() returns immediately; the response JSON (or None for an empty body)
    goes to on_success, any HTTP/decoding error goes to on_error.
    """

    def __init__(self, cfg: Optional[HttpTransportConfig] = None, *, client: Optional[httpx.AsyncClient] = None):
        self.cfg = cfg or HttpTransportConfig()
        self._client = client
        self._tasks: Set[asyncio.Task] = set()

    def send(self, url: str, body: str, on_success: OnSuccess, on_error: OnError) -> None:
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._post(url, body, on_success, on_error))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _request(self, client: httpx.AsyncClient, url: str, body: str) -> httpx.Response:
        headers = {"Content-Type": FORM_CONTENT_TYPE, **self.cfg.headers}
        r = await client.post(url, content=body, headers=headers)
        r.raise_for_status()
        return r

    async def _post(self, url: str, body: str, on_success: OnSuccess, on_error: OnError) -> None:
        try:
            if self._client is not None:
                r = await self._request(self._client, url, body)
            else:
                async with httpx.AsyncClient(timeout=self.cfg.timeout) as client:
                    r = await self._request(client, url, body)
            envelope = r.json() if r.content.strip() else None
            if envelope is not None and not isinstance(envelope, dict):
                raise ValueError(f"expected a JSON object, got {type(envelope).__name__}")
        except (httpx.HTTPError, ValueError) as e:
            log.warning("POST %s failed: %s", url, e)
            on_error(e)
            return
        on_success(envelope)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def wait_idle(self) -> None:
        """Wait for every outstanding POST to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        await self.wait_idle()
        if self._client is not None:
            await self._client.aclose()
