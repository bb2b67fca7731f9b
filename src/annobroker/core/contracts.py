from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Sequence, Union

__all__ = [
    "RequestId",
    "Message",
    "CriticalKind",
    "NoException",
    "Suppressed",
    "Critical",
    "Delegated",
    "ExceptionState",
    "parse_exception",
    "ResponseEnvelope",
    "RequestOptions",
]


# --------- Primitive / aliases ---------
RequestId = int


class Message(NamedTuple):
    """A display triple published on the `messages` event."""
    text: str
    severity: str = "comment"
    duration_ms: int = 3000     # -1 means "until dismissed"

    @classmethod
    def coerce(cls, raw: Any) -> "Message":
        if isinstance(raw, Message):
            return raw
        if isinstance(raw, str):
            return cls(raw)
        return cls(*raw)


# --------- Exception variants ---------
class CriticalKind(str, Enum):
    CONFIGURATION_ERROR = "configurationError"
    PROTOCOL_VERSION_MISMATCH = "protocolVersionMismatch"


@dataclass(frozen=True, slots=True)
class NoException:
    """Field absent or null; the echoed action is checked."""
    def to_wire(self) -> Any:
        return None


@dataclass(frozen=True, slots=True)
class Suppressed:
    """Server flagged a generic failure: drop the callback, close the waiter."""
    def to_wire(self) -> Any:
        return True


@dataclass(frozen=True, slots=True)
class Critical:
    kind: CriticalKind

    def to_wire(self) -> Any:
        return self.kind.value


@dataclass(frozen=True, slots=True)
class Delegated:
    """Any other exception value; the callback receives it and deals with it."""
    value: Any

    def to_wire(self) -> Any:
        return self.value


ExceptionState = Union[NoException, Suppressed, Critical, Delegated]


def parse_exception(raw: Any) -> ExceptionState:
    if raw is None:
        return NoException()
    if raw is True:
        return Suppressed()
    if isinstance(raw, str):
        try:
            return Critical(CriticalKind(raw))
        except ValueError:
            pass
    return Delegated(raw)


# --------- Response envelope ---------
@dataclass(slots=True)
class ResponseEnvelope:
    action: Optional[str]
    exception: ExceptionState = field(default_factory=NoException)
    messages: List[Message] = field(default_factory=list)
    fields: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "ResponseEnvelope":
        rest = {k: v for k, v in d.items() if k not in ("action", "exception", "messages")}
        raw_msgs: Sequence[Any] = d.get("messages") or []
        return cls(
            action=d.get("action"),
            exception=parse_exception(d.get("exception")),
            messages=[Message.coerce(m) for m in raw_msgs],
            fields=rest,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Flat mapping handed to callbacks: action fields plus the envelope keys."""
        out: Dict[str, Any] = dict(self.fields)
        out["action"] = self.action
        out["messages"] = list(self.messages)
        wire = self.exception.to_wire()
        if wire is not None:
            out["exception"] = wire
        return out


# --------- Request options ---------
@dataclass(slots=True)
class RequestOptions:
    """`keep` is consumed by the broker; everything else is merged into the response."""
    keep: bool = False
    merge: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, options: Optional[Mapping[str, Any]]) -> "RequestOptions":
        if not options:
            return cls()
        merge = dict(options)
        keep = bool(merge.pop("keep", False))
        return cls(keep=keep, merge=merge)
