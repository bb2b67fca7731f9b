"""
Counters, gauges and round-trip samples for brokers and task queues.

Everything is reported into one process-wide registry with labels; each
broker labels its metrics with `broker=<name>` and each task queue with
`queue=<name>`, so `snapshot(broker="main")` answers "how is this broker
doing" even when several brokers share a process. The registry is not
locked: it lives on the single thread that drives the brokers.
"""
from __future__ import annotations

import json
import logging
from collections import deque
from statistics import mean
from typing import Any, Deque, Dict, List, Optional, Tuple

Labels = Tuple[Tuple[str, str], ...]
Key = Tuple[str, Labels]


def _labels(labels: Dict[str, Any]) -> Labels:
    return tuple(sorted((str(k), str(v)) for k, v in labels.items()))


def _matches(labels: Labels, match: Dict[str, Any]) -> bool:
    have = dict(labels)
    return all(have.get(k) == str(v) for k, v in match.items())


class _Samples:
    """Sliding window of millisecond observations."""

    def __init__(self, maxlen: int = 1024):
        self._values: Deque[float] = deque(maxlen=maxlen)

    def add(self, v: float) -> None:
        self._values.append(float(v))

    def summary(self) -> Dict[str, float]:
        vals = sorted(self._values)
        if not vals:
            return {"count": 0, "mean": 0.0, "p90": 0.0, "max": 0.0}
        return {
            "count": len(vals),
            "mean": mean(vals),
            "p90": vals[min(len(vals) - 1, int(round((len(vals) - 1) * 0.9)))],
            "max": vals[-1],
        }


class _Registry:
    def __init__(self) -> None:
        self.counters: Dict[Key, float] = {}
        self.gauges: Dict[Key, float] = {}
        self.samples: Dict[Key, _Samples] = {}

    def select(self, match: Dict[str, Any]) -> Dict[str, List[Dict[str, Any]]]:
        out: Dict[str, List[Dict[str, Any]]] = {"counters": [], "gauges": [], "hists": []}
        for (name, labels), v in sorted(self.counters.items()):
            if _matches(labels, match):
                out["counters"].append({"name": name, "labels": dict(labels), "value": v})
        for (name, labels), v in sorted(self.gauges.items()):
            if _matches(labels, match):
                out["gauges"].append({"name": name, "labels": dict(labels), "value": v})
        for (name, labels), s in sorted(self.samples.items(), key=lambda kv: kv[0]):
            if _matches(labels, match):
                out["hists"].append({"name": name, "labels": dict(labels), **s.summary()})
        return out


_REG = _Registry()


def inc(name: str, n: float = 1.0, **labels: Any) -> None:
    key = (name, _labels(labels))
    _REG.counters[key] = _REG.counters.get(key, 0.0) + n


def gauge_set(name: str, v: float, **labels: Any) -> None:
    _REG.gauges[(name, _labels(labels))] = float(v)


def observe_hist(name: str, v: float, **labels: Any) -> None:
    key = (name, _labels(labels))
    s = _REG.samples.get(key)
    if s is None:
        s = _REG.samples[key] = _Samples()
    s.add(v)


def counter_value(name: str, **labels: Any) -> float:
    return _REG.counters.get((name, _labels(labels)), 0.0)


def gauge_value(name: str, **labels: Any) -> float:
    return _REG.gauges.get((name, _labels(labels)), 0.0)


def snapshot(**match: Any) -> Dict[str, List[Dict[str, Any]]]:
    """Metrics whose labels include every `match` pair (all metrics without one)."""
    return _REG.select(match)


def log_snapshot(logger: Optional[logging.Logger] = None, json_mode: bool = False, **match: Any) -> int:
    """Write the matching metrics to a logger, one line each; returns the line count."""
    lg = logger or logging.getLogger("annobroker.metrics")
    lines = 0
    for kind, entries in snapshot(**match).items():
        for e in entries:
            if json_mode:
                lg.info(json.dumps({"type": kind, **e}, default=str))
            elif kind == "hists":
                lg.info("[%s] %s %s n=%d mean=%.3f p90=%.3f max=%.3f", kind, e["name"], e["labels"],
                        e["count"], e["mean"], e["p90"], e["max"])
            else:
                lg.info("[%s] %s %s value=%g", kind, e["name"], e["labels"], e["value"])
            lines += 1
    return lines
