# src/annobroker/core/buffer.py
from __future__ import annotations
import collections
from typing import Any, Deque, List

class RingBuffer:
    def __init__(self, capacity: int = 256):
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self.cap = capacity
        self.buf: Deque[Any] = collections.deque(maxlen=capacity)

    def push(self, item: Any):
        self.buf.append(item)  # oldest entry falls off when full

    def items(self) -> List[Any]:
        return list(self.buf)

    def __len__(self): return len(self.buf)
