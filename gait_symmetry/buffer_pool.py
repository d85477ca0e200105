"""
Buffer Pool
===========

A bounded set of preallocated numpy buffers shared by simulation workers.
A worker checks a buffer out, uses it exclusively and hands it back; no
buffer is ever visible to two workers at once.
"""

import logging
import queue
from contextlib import contextmanager


logger = logging.getLogger(__name__)


class BufferPool:
    """
    Fixed-size pool of reusable buffers

    Parameters:
    -----------
    size : int
        Number of buffers; size them to (worker count + 1)
    factory : callable
        Zero-argument callable returning a new buffer
    """

    def __init__(self, size, factory):
        if size < 1:
            raise ValueError(f"BufferPool size must be >= 1, got {size}")
        self._free = queue.Queue(maxsize=size)
        self._owned = set()
        for _ in range(size):
            buf = factory()
            self._owned.add(id(buf))
            self._free.put_nowait(buf)
        self.size = size
        logger.debug("BufferPool allocated %d buffers", size)

    @property
    def available(self):
        return self._free.qsize()

    def acquire(self, timeout=None):
        """Check out a buffer, blocking until one is free"""
        return self._free.get(timeout=timeout)

    def release(self, buf):
        if id(buf) not in self._owned:
            raise ValueError("Buffer does not belong to this pool")
        self._free.put_nowait(buf)

    @contextmanager
    def checkout(self, timeout=None):
        buf = self.acquire(timeout=timeout)
        try:
            yield buf
        finally:
            self.release(buf)

    def with_buffer(self, fn):
        """Run ``fn(buf)`` on a checked-out buffer and return its result"""
        with self.checkout() as buf:
            return fn(buf)
