# src/annobroker/core/bus.py
from __future__ import annotations
import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Optional, Sequence, Tuple
from annobroker.core import log
from annobroker.core.metrics import inc, gauge_set, observe_hist


@dataclass
class Task:
    fn: Callable[..., Any]
    args: Tuple[Any, ...] = field(default_factory=tuple)
    cancelled: bool = False
    done: bool = False

    @property
    def name(self) -> str:
        return getattr(self.fn, "__name__", repr(self.fn))


class TaskQueue:
    """
    FIFO of deferred calls, drained explicitly.

    Nothing runs inside put(); callers (or an asyncio loop) decide when the
    queue is drained, so ordering is deterministic:
    - run_pending(): run what is queued right now, synchronously
    - drain():       async, keep going until empty, yielding between tasks
    - run()/stop():  long-lived polling loop for an asyncio application
    """

    def __init__(self, name: str = "tasks"):
        self.name = name
        self.l = log.get(name)
        self._q: Deque[Task] = deque()
        self._running = False

    def put(self, fn: Callable[..., Any], args: Optional[Sequence[Any]] = None) -> Task:
        if not callable(fn):
            raise TypeError(f"deferred target is not callable: {fn!r}")
        task = Task(fn=fn, args=tuple(args or ()))
        self._q.append(task)
        gauge_set("tasks_queue_depth", float(len(self._q)), queue=self.name)
        return task

    def cancel(self, task: Task) -> bool:
        """Cooperative: a cancelled task stays queued but is skipped."""
        if task.done:
            return False
        task.cancelled = True
        return True

    def __len__(self) -> int:
        return len(self._q)

    def _run_one(self, task: Task) -> None:
        try:
            if task.cancelled:
                inc("tasks_cancelled_total", 1, queue=self.name)
                return
            t0 = time.perf_counter()
            task.fn(*task.args)
            observe_hist("tasks_run_ms", (time.perf_counter() - t0) * 1000.0, queue=self.name)
            inc("tasks_run_total", 1, queue=self.name)
        except Exception as e:
            inc("tasks_failed_total", 1, queue=self.name)
            self.l.error("deferred task error fn=%s err=%s", task.name, e, exc_info=True)
        finally:
            task.done = True

    def run_pending(self, limit: Optional[int] = None) -> int:
        """Run tasks queued before this call; tasks they schedule wait for the next round."""
        budget = len(self._q) if limit is None else min(limit, len(self._q))
        ran = 0
        for _ in range(budget):
            task = self._q.popleft()
            self._run_one(task)
            if not task.cancelled:
                ran += 1
        gauge_set("tasks_queue_depth", float(len(self._q)), queue=self.name)
        return ran

    async def drain(self) -> int:
        ran = 0
        while self._q:
            ran += self.run_pending(limit=1)
            await asyncio.sleep(0)
        return ran

    async def run(self, poll_interval: float = 0.01) -> None:
        if self._running:
            return
        self._running = True
        self.l.info("task queue start")
        try:
            while self._running:
                if self._q:
                    self.run_pending(limit=1)
                    await asyncio.sleep(0)
                else:
                    await asyncio.sleep(poll_interval)
        finally:
            self._running = False
            self.l.info("task queue stop")

    def stop(self) -> None:
        self._running = False
