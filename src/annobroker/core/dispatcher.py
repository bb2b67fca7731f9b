# src/annobroker/core/dispatcher.py
from __future__ import annotations
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union
from annobroker.core import log
from annobroker.core.buffer import RingBuffer
from annobroker.core.bus import Task, TaskQueue
from annobroker.core.metrics import inc

Handler = Callable[..., Any]

# post(DEFER, fn, args) schedules fn(*args) on the task queue instead of publishing
DEFER = 0


class Dispatcher:
    def __init__(self, name: str = "dispatcher", *, queue: Optional[TaskQueue] = None, history: int = 256):
        self.name = name
        self.l = log.get(name)
        self.queue = queue if queue is not None else TaskQueue(name=f"{name}.tasks")
        self._subs: Dict[str, List[Handler]] = {}
        self._history: Dict[str, RingBuffer] = {}
        self._history_len = int(history)

    def on(self, event: str, handler: Handler) -> "Dispatcher":
        self._subs.setdefault(event, []).append(handler)
        self.l.debug("subscribed event=%s fn=%s", event, getattr(handler, "__name__", str(handler)))
        return self

    def off(self, event: str, handler: Handler) -> bool:
        fns = self._subs.get(event)
        if not fns or handler not in fns:
            return False
        fns.remove(handler)
        return True

    def defer(self, fn: Handler, *args: Any) -> Task:
        return self.queue.put(fn, args)

    def post(self, event: Union[str, int], *args: Any) -> Optional[List[Any]]:
        """
        - post(event, *args): call every handler now, return their results
        - post(DEFER, fn, args): queue fn(*args), return None
        """
        if event == DEFER and not isinstance(event, str):
            fn = args[0]
            fargs: Sequence[Any] = args[1] if len(args) > 1 else ()
            self.queue.put(fn, fargs)
            return None

        self._record(event, args)
        inc("dispatch_post_total", 1, event=event)
        results: List[Any] = []
        for fn in list(self._subs.get(event, ())):
            try:
                results.append(fn(*args))
            except Exception as e:
                inc("dispatch_error_total", 1, event=event)
                self.l.error("handler error event=%s fn=%s err=%s", event, fn, e, exc_info=True)
        return results

    def ask_all(self, event: str, *args: Any) -> bool:
        """True iff every handler answered truthy (vacuously true with no handlers)."""
        return all(self.post(event, *args) or [])

    # ---- inspection ----
    def _record(self, event: str, args: Tuple[Any, ...]) -> None:
        buf = self._history.get(event)
        if buf is None:
            buf = self._history[event] = RingBuffer(self._history_len)
        buf.push(args)

    def history(self, event: str) -> List[Tuple[Any, ...]]:
        buf = self._history.get(event)
        return [] if buf is None else buf.items()

    def count(self, event: str) -> int:
        buf = self._history.get(event)
        return 0 if buf is None else len(buf)

    def handlers(self, event: str) -> List[Handler]:
        return list(self._subs.get(event, ()))
