"""Bounded hand-off channels between the pipeline thread and its consumers.

Senders never wait longer than the timeout they pass; an item that cannot be
handed over in time is dropped and ``send`` returns False.
"""

from __future__ import annotations

import queue
import threading
import time
from typing import Generic, Optional, TypeVar

T = TypeVar("T")

PREVIEW_CAPACITY = 2
PREVIEW_SEND_TIMEOUT = 0.008
TELEMETRY_SEND_TIMEOUT = 0.004


class BoundedChannel(Generic[T]):
    """Fixed-capacity FIFO. Concurrent readers compete for items."""

    def __init__(self, capacity: int = PREVIEW_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be >= 1, use RendezvousChannel for 0")
        self.capacity = capacity
        self._queue: queue.Queue[T] = queue.Queue(maxsize=capacity)

    def send(self, item: T, timeout: float) -> bool:
        try:
            self._queue.put(item, timeout=timeout)
        except queue.Full:
            return False
        return True

    def recv(self, timeout: Optional[float] = None) -> Optional[T]:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def qsize(self) -> int:
        return self._queue.qsize()


class RendezvousChannel(Generic[T]):
    """Zero-capacity channel: a send only succeeds into a waiting ``recv``."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._receivers = 0
        self._item: Optional[T] = None
        self._full = False

    def send(self, item: T, timeout: float) -> bool:
        deadline = time.monotonic() + timeout
        with self._cond:
            while self._receivers == 0 or self._full:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._cond.wait(remaining)
            self._item = item
            self._full = True
            self._cond.notify_all()
            return True

    def recv(self, timeout: Optional[float] = None) -> Optional[T]:
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            self._receivers += 1
            self._cond.notify_all()
            try:
                # a handed-over item is always taken, even past the deadline
                while not self._full:
                    if deadline is None:
                        self._cond.wait()
                        continue
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return None
                    self._cond.wait(remaining)
                item = self._item
                self._item = None
                self._full = False
                self._cond.notify_all()
                return item
            finally:
                self._receivers -= 1
