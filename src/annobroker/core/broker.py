# src/annobroker/core/broker.py
from __future__ import annotations

import time
from functools import partial
from typing import Any, Callable, Dict, List, Mapping, Optional

from annobroker.adapters.transport import Transport, serialize_payload
from annobroker.adapters.ui import RELOAD_PROMPT, NullWaiter, ReloadPolicy, StaticReloadPolicy, Waiter
from annobroker.core import log
from annobroker.core.contracts import (
    Critical,
    CriticalKind,
    Message,
    NoException,
    RequestId,
    RequestOptions,
    ResponseEnvelope,
    Suppressed,
)
from annobroker.core.dispatcher import DEFER, Dispatcher
from annobroker.core.metrics import gauge_set, inc, observe_hist, snapshot

DEFAULT_PROTOCOL = 1

Callback = Callable[[Dict[str, Any]], Any]

FATAL_VERSION_MISMATCH = Message(
    "Fatal Error: Protocol version mismatch, please contact the administrator", "error", -1
)


def protocol_error(expected: str, got: Any) -> Message:
    return Message(
        f"Protocol error: Action {expected} returned the results of action {got}, "
        "maybe the server is unable to run, please check the server logs to diagnose it",
        "error",
        -1,
    )


class Broker:
    """
    Correlates requests to the annotation server with their responses.

    Every submit() gets an id that stays "relevant" until its response is
    delivered or until it is made obsolete (invalidate() or a critical server
    exception). Responses for ids that are no longer relevant are dropped.

    The broker also answers three dispatcher events:
        ajax             -> submit(payload, callback, options)
        isReloadOkay     -> is_reload_safe()
        makeAjaxObsolete -> invalidate(all)
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        transport: Transport,
        *,
        url: str,
        protocol_version: int = DEFAULT_PROTOCOL,
        waiter: Optional[Waiter] = None,
        reload_policy: Optional[ReloadPolicy] = None,
        name: str = "broker",
    ):
        self.dispatcher = dispatcher
        self.transport = transport
        self.url = url
        self.protocol_version = int(protocol_version)
        self.waiter = waiter or NullWaiter()
        self.reload_policy = reload_policy or StaticReloadPolicy(accept=False)
        self.name = name
        self.l = log.get(name)

        self._pending = 0
        self._next_id = 0
        # id -> keep flag; presence means the response is still wanted
        self._relevant: Dict[RequestId, bool] = {}
        # id -> submit time; presence means the transport has not settled yet
        self._in_flight: Dict[RequestId, float] = {}
        self._halted = False

        (dispatcher
            .on("isReloadOkay", self.is_reload_safe)
            .on("makeAjaxObsolete", self.invalidate)
            .on("ajax", self.submit))

    # ---- queries ----
    @property
    def pending(self) -> int:
        return self._pending

    @property
    def halted(self) -> bool:
        return self._halted

    def pending_ids(self) -> List[RequestId]:
        return sorted(self._relevant)

    def is_pending(self, rid: RequestId) -> bool:
        return rid in self._relevant

    def is_reload_safe(self) -> bool:
        # do not reload while data is in flight
        return self._pending == 0

    def stats(self) -> Dict[str, Any]:
        """Metrics reported by this broker only."""
        return snapshot(broker=self.name)

    # ---- commands ----
    def submit(
        self,
        payload: Mapping[str, Any],
        callback: Optional[Callback] = None,
        options: Optional[Mapping[str, Any]] = None,
    ) -> RequestId:
        if "action" not in payload:
            raise ValueError("request payload needs an 'action'")
        opts = RequestOptions.from_mapping(options)
        data = dict(payload)
        if data.get("protocol") is None:
            data["protocol"] = self.protocol_version

        self.dispatcher.post("spin")
        self._pending += 1
        rid = self._next_id
        self._next_id += 1
        self._relevant[rid] = opts.keep
        self._in_flight[rid] = time.perf_counter()
        self._report_pending()
        inc("broker_submit_total", 1, broker=self.name, action=data["action"])
        self.l.debug("submit action=%s keep=%s", data["action"], opts.keep, extra={"request_id": rid})

        try:
            self.transport.send(
                self.url,
                serialize_payload(data),
                partial(self._on_success, rid, data, callback, opts),
                partial(self._on_error, rid, data),
            )
        except Exception as e:
            # the request never left; settle it like a failed one
            self._on_error(rid, data, e)
        return rid

    def invalidate(self, all: bool = False) -> int:
        """Forget pending requests; returns how many were made obsolete."""
        before = len(self._relevant)
        if all:
            self._relevant.clear()
        else:
            self._relevant = {rid: keep for rid, keep in self._relevant.items() if keep}
        dropped = before - len(self._relevant)
        if dropped:
            self.l.debug("made %d request(s) obsolete (all=%s)", dropped, all)
        return dropped

    # ---- transport callbacks ----
    def _settle(self, rid: RequestId, action: str) -> bool:
        started = self._in_flight.pop(rid, None)
        if started is None:
            self.l.warning("second resolution ignored", extra={"request_id": rid})
            return False
        self._pending -= 1
        self._report_pending()
        observe_hist("broker_roundtrip_ms", (time.perf_counter() - started) * 1000.0, broker=self.name, action=action)
        return True

    def _on_success(
        self,
        rid: RequestId,
        data: Dict[str, Any],
        callback: Optional[Callback],
        opts: RequestOptions,
        raw: Optional[Mapping[str, Any]],
    ) -> None:
        action = data["action"]
        env = None
        if raw is not None:
            try:
                env = ResponseEnvelope.from_dict(raw)
            except (TypeError, ValueError, AttributeError) as e:
                self._on_error(rid, data, e)
                return

        if not self._settle(rid, action):
            return

        if env is None:
            # e.g. an unrelated redirect answered instead of the server
            self.l.info("response carried no broker data - ignoring", extra={"request_id": rid})
            self._finish("empty")
            return

        if isinstance(env.exception, NoException) and env.action != action:
            self.l.error("action %s returned the results of action %s", action, env.action, extra={"request_id": rid})
            env.exception = Suppressed()
            self.dispatcher.post("messages", [protocol_error(action, env.action)])

        if rid not in self._relevant:
            self.l.debug("obsolete response discarded", extra={"request_id": rid})
            self._finish("obsolete")
            return

        self.dispatcher.post("messages", env.messages)

        if isinstance(env.exception, Critical):
            inc("broker_resolve_total", 1, broker=self.name, outcome="critical")
            self._escalate(env.exception.kind, rid)
            return

        del self._relevant[rid]

        if isinstance(env.exception, Suppressed):
            self.waiter.close()
            self._finish("suppressed")
            return

        if callback is not None:
            response = env.to_dict()
            response.update(opts.merge)
            self.dispatcher.post(DEFER, callback, [response])
        self._finish("delivered")

    def _on_error(self, rid: RequestId, data: Dict[str, Any], exc: BaseException) -> None:
        if not self._settle(rid, data["action"]):
            return
        self._relevant.pop(rid, None)
        # nothing goes to the message bus; the UI is only reset
        self.l.warning("action %s failed: %s", data["action"], exc, extra={"request_id": rid})
        self.dispatcher.post("unspin")
        self.waiter.close()
        inc("broker_resolve_total", 1, broker=self.name, outcome="failed")

    def _escalate(self, kind: CriticalKind, rid: RequestId) -> None:
        dropped = len(self._relevant) - 1
        self._relevant.clear()
        self._halted = True
        self.l.error("critical server exception %s; %d other request(s) dropped", kind.value, dropped,
                     extra={"request_id": rid})
        self.dispatcher.post("screamingHalt")

        if kind is CriticalKind.PROTOCOL_VERSION_MISMATCH:
            if self.reload_policy.confirm(RELOAD_PROMPT):
                self.reload_policy.reload()
            else:
                self.dispatcher.post("messages", [FATAL_VERSION_MISMATCH])

    def _finish(self, outcome: str) -> None:
        inc("broker_resolve_total", 1, broker=self.name, outcome=outcome)
        self.dispatcher.post("unspin")

    def _report_pending(self) -> None:
        gauge_set("broker_pending", float(self._pending), broker=self.name)
