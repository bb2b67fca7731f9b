import json
import logging

from annobroker.adapters.transport import ManualTransport
from annobroker.core.broker import Broker
from annobroker.core.dispatcher import Dispatcher
from annobroker.core.metrics import gauge_value, inc, log_snapshot, snapshot


def _names(snap):
    return {m["name"] for group in snap.values() for m in group}


def test_snapshot_filters_by_labels():
    inc("widget_total", 2, broker="m.one", kind="a")
    inc("widget_total", 5, broker="m.two", kind="a")

    one = snapshot(broker="m.one")
    assert one["counters"] == [{"name": "widget_total", "labels": {"broker": "m.one", "kind": "a"}, "value": 2.0}]
    assert snapshot(broker="m.nobody") == {"counters": [], "gauges": [], "hists": []}


def test_broker_stats_are_per_broker():
    t1, t2 = ManualTransport(), ManualTransport()
    b1 = Broker(Dispatcher(name="m.d1"), t1, url="/one", name="m.b1")
    b2 = Broker(Dispatcher(name="m.d2"), t2, url="/two", name="m.b2")

    b1.submit({"action": "getDocument"})
    b1.submit({"action": "getDocument"})
    b2.submit({"action": "whoami"})
    t1.resolve(0, {"action": "getDocument", "messages": []})

    stats = b1.stats()
    assert {"broker_submit_total", "broker_resolve_total", "broker_pending", "broker_roundtrip_ms"} <= _names(stats)
    submitted = {c["labels"]["action"]: c["value"] for c in stats["counters"] if c["name"] == "broker_submit_total"}
    assert submitted == {"getDocument": 2.0}
    [rt] = [h for h in stats["hists"] if h["name"] == "broker_roundtrip_ms"]
    assert rt["count"] == 1
    assert gauge_value("broker_pending", broker="m.b1") == 1.0
    assert gauge_value("broker_pending", broker="m.b2") == 1.0


def test_log_snapshot_writes_one_line_per_metric(caplog):
    inc("lines_total", 1, broker="m.log")
    inc("lines_total", 1, broker="m.log", extra="x")

    caplog.set_level(logging.INFO, logger="m.plain")
    assert log_snapshot(logging.getLogger("m.plain"), broker="m.log") == 2
    assert all("lines_total" in r.getMessage() for r in caplog.records if r.name == "m.plain")

    caplog.set_level(logging.INFO, logger="m.json")
    log_snapshot(logging.getLogger("m.json"), json_mode=True, broker="m.log")
    rows = [json.loads(r.getMessage()) for r in caplog.records if r.name == "m.json"]
    assert {row["type"] for row in rows} == {"counters"}
    assert {row["value"] for row in rows} == {1.0}
