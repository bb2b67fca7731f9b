import pytest

from annobroker.adapters.transport import serialize_payload
from annobroker.core.contracts import (
    Critical,
    CriticalKind,
    Delegated,
    Message,
    NoException,
    RequestOptions,
    ResponseEnvelope,
    Suppressed,
    parse_exception,
)


@pytest.mark.parametrize("raw, expected", [
    (None, NoException()),
    (False, Delegated(False)),
    (True, Suppressed()),
    ("configurationError", Critical(CriticalKind.CONFIGURATION_ERROR)),
    ("protocolVersionMismatch", Critical(CriticalKind.PROTOCOL_VERSION_MISMATCH)),
    ("annotationIsReadOnly", Delegated("annotationIsReadOnly")),
])
def test_parse_exception(raw, expected):
    assert parse_exception(raw) == expected


def test_envelope_keeps_action_fields():
    env = ResponseEnvelope.from_dict({
        "action": "getDocument",
        "messages": [["Loaded", "comment", 2000], "plain"],
        "text": "Hello",
    })
    assert env.exception == NoException()
    assert env.messages == [Message("Loaded", "comment", 2000), Message("plain")]
    assert env.fields == {"text": "Hello"}
    assert env.to_dict() == {"action": "getDocument", "messages": env.messages, "text": "Hello"}

    env.exception = Suppressed()
    assert env.to_dict()["exception"] is True


def test_request_options_strip_keep():
    opts = RequestOptions.from_mapping({"keep": True, "collection": "/"})
    assert opts.keep is True
    assert opts.merge == {"collection": "/"}
    assert RequestOptions.from_mapping(None) == RequestOptions()


def test_serialize_payload():
    body = serialize_payload({"action": "x", "ids": ["T1", "T2"], "flag": True,
                              "attrs": {"a": 1}, "skip": None})
    assert body == "action=x&ids=T1&ids=T2&flag=true&attrs=%7B%22a%22%3A1%7D"
