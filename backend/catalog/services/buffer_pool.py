"""
Catalog Backend — Byte Buffer Pool
====================================

What:  Hands out reusable io.BytesIO buffers for image encoding.
Why:   Every upload re-encodes an image into memory before it is written.
       Reusing buffers keeps already-grown allocations around instead of
       growing a fresh one for each request.
How:   A lock-protected LIFO stack of idle buffers. acquire() pops (or
       allocates) and resets; release() pushes back unless the buffer is too
       large to be worth keeping or the stack is full.

The pool is never a correctness dependency: NullBufferPool always allocates
and produces identical results. Tests run the optimizer against both.

Scope: the pool backs encode output only. Upload bytes arrive as a fresh
`bytes` object per request and are never pooled. Each encode buffer is
acquired and released inside the worker running optimize(), so a job
abandoned on timeout keeps its buffer until it finishes and no other job
can be handed that buffer in the meantime.
"""

import io
import logging
import threading
from contextlib import contextmanager
from typing import Iterator, List

logger = logging.getLogger(__name__)


class BufferPool:
    """
    Thread-safe pool of reusable byte buffers.

    Ownership:
        A buffer belongs to exactly one caller between acquire() and
        release(). The caller must not read or write it after release().

    Args:
        max_idle: Number of idle buffers retained (0 disables retention).
        max_buffer_bytes: Buffers whose allocation grew beyond this are
                          dropped on release so one huge upload does not
                          pin memory forever.
    """

    def __init__(self, max_idle: int = 32, max_buffer_bytes: int = 16 * 1024 * 1024):
        self.max_idle = max_idle
        self.max_buffer_bytes = max_buffer_bytes
        self._idle: List[io.BytesIO] = []
        self._lock = threading.Lock()

    def acquire(self) -> io.BytesIO:
        """Return an empty buffer, reusing an idle one when available."""
        with self._lock:
            buffer = self._idle.pop() if self._idle else None
        if buffer is None:
            return io.BytesIO()
        buffer.seek(0)
        buffer.truncate(0)
        return buffer

    def release(self, buffer: io.BytesIO) -> None:
        """Give a buffer back to the pool."""
        if buffer.closed:
            return
        with buffer.getbuffer() as view:
            size = view.nbytes
        if size > self.max_buffer_bytes:
            logger.debug("Dropping oversized buffer (%d bytes)", size)
            return
        with self._lock:
            if len(self._idle) < self.max_idle:
                self._idle.append(buffer)

    @contextmanager
    def borrow(self) -> Iterator[io.BytesIO]:
        """Acquire a buffer for the duration of a with-block."""
        buffer = self.acquire()
        try:
            yield buffer
        finally:
            self.release(buffer)

    @property
    def idle_count(self) -> int:
        with self._lock:
            return len(self._idle)


class NullBufferPool(BufferPool):
    """A pool that never retains anything: every acquire() allocates."""

    def __init__(self):
        super().__init__(max_idle=0)

    def acquire(self) -> io.BytesIO:
        return io.BytesIO()

    def release(self, buffer: io.BytesIO) -> None:
        buffer.close()
