# src/annobroker/adapters/transport.py
from __future__ import annotations
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional, Protocol
from urllib.parse import urlencode

log = logging.getLogger(__name__)

OnSuccess = Callable[[Optional[Mapping[str, Any]]], None]
OnError = Callable[[BaseException], None]


class TransportError(RuntimeError):
    pass


class Transport(Protocol):
    """Fire-and-forget POST. Exactly one of on_success / on_error fires, later."""

    def send(self, url: str, body: str, on_success: OnSuccess, on_error: OnError) -> None: ...


def serialize_payload(payload: Mapping[str, Any]) -> str:
    """Form-encode a request; sequences repeat the key, mappings go out as JSON."""
    pairs = []
    for k, v in payload.items():
        if v is None:
            continue
        if isinstance(v, bool):
            pairs.append((k, "true" if v else "false"))
        elif isinstance(v, (list, tuple)):
            pairs.extend((k, x) for x in v)
        elif isinstance(v, dict):
            pairs.append((k, json.dumps(v, separators=(",", ":"))))
        else:
            pairs.append((k, v))
    return urlencode(pairs)


@dataclass
class PendingCall:
    url: str
    body: str
    on_success: OnSuccess
    on_error: OnError
    settled: bool = False


class ManualTransport:
    """
    In-memory transport resolved by hand.

    send() only records the call; the host (or a test) settles it later with
    resolve()/fail(), in any order.
    """

    def __init__(self):
        self.calls: List[PendingCall] = []

    def send(self, url: str, body: str, on_success: OnSuccess, on_error: OnError) -> None:
        self.calls.append(PendingCall(url, body, on_success, on_error))
        log.debug("queued call #%d url=%s", len(self.calls) - 1, url)

    def _take(self, index: int) -> PendingCall:
        call = self.calls[index]
        if call.settled:
            raise TransportError(f"call #{index} already settled")
        call.settled = True
        return call

    def resolve(self, index: int, envelope: Optional[Mapping[str, Any]]) -> None:
        self._take(index).on_success(envelope)

    def fail(self, index: int, exc: Optional[BaseException] = None) -> None:
        self._take(index).on_error(exc or TransportError("request failed"))

    @property
    def outstanding(self) -> List[int]:
        return [i for i, c in enumerate(self.calls) if not c.settled]
