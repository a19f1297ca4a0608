"""
Catalog Backend — Upload Orchestrator
=======================================

What:  Runs the ImageOptimizer off the event loop with a hard deadline.
Why:   Decoding and resizing are CPU-bound and can take arbitrarily long on
       hostile or huge inputs. The request handler must get an answer within
       a bounded time while other requests keep being served.
How:   The optimize call is submitted to a dedicated ThreadPoolExecutor and
       the resulting future is raced against the deadline with asyncio.wait.

Per-invocation state machine:
    Pending ──(optimizer finishes first)──▶ Completed(result)
    Pending ──(deadline elapses first)────▶ TimedOut → ImageTimeoutError

Timeout semantics:
    Python threads cannot be pre-empted, so a timeout means "stop waiting"
    plus a cooperative signal: the job's cancel event is set and the
    optimizer bails out at its next step boundary. Whatever the abandoned job
    eventually returns is discarded, and if it finished writing the file
    before noticing the signal, that file is deleted. A single codec call
    (one decode or one resize) still runs to completion in the worker thread.
"""

import asyncio
import concurrent.futures
import logging
import os
import threading
import time
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from catalog.config import settings
from catalog.exceptions import ImageTimeoutError
from catalog.services.buffer_pool import BufferPool
from catalog.services.image_optimizer import ImageOptimizer, OptimizationResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RawUpload:
    """
    An uploaded image held in memory for exactly one optimization.

    Attributes:
        content: Full bytes of the uploaded file.
        extension: Normalized extension from the client's file name ("" if none).
    """

    content: bytes
    extension: str

    @property
    def size(self) -> int:
        return len(self.content)


class UploadOrchestrator:
    """
    Deadline-bounded, thread-isolated front end for ImageOptimizer.

    Args:
        optimizer: The optimizer shared by all worker threads.
        timeout: Default deadline in seconds (10s unless configured).
        max_workers: Size of the dedicated worker pool.
        executor: Inject an executor (tests); otherwise one is created.
    """

    def __init__(
        self,
        optimizer: ImageOptimizer,
        timeout: float = 10.0,
        max_workers: int = 4,
        executor: Optional[concurrent.futures.Executor] = None,
    ):
        self.optimizer = optimizer
        self.timeout = timeout
        self._executor = executor or concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="image-optimizer",
        )

    async def run(
        self,
        raw_bytes: bytes,
        destination_path: Union[str, Path],
        extension: str,
        timeout: Optional[float] = None,
    ) -> OptimizationResult:
        """
        Optimize an upload, giving up after the deadline.

        Returns:
            The optimizer's own result when it finishes in time, otherwise
            OptimizationResult(error=ImageTimeoutError). Exactly one result
            per call; never raises for decode, write or timeout failures.
        """
        deadline = self.timeout if timeout is None else timeout
        cancel_event = threading.Event()
        started = time.perf_counter()

        job = self._executor.submit(
            self.optimizer.optimize,
            raw_bytes,
            destination_path,
            extension,
            cancel_event,
        )
        waiter = asyncio.wrap_future(job)

        try:
            done, _ = await asyncio.wait({waiter}, timeout=deadline)
        except asyncio.CancelledError:
            # Client went away; same treatment as a timeout
            self._abandon(job, waiter, cancel_event)
            raise

        if waiter in done:
            # Unexpected exceptions (bugs) propagate to the global handler
            return waiter.result()

        self._abandon(job, waiter, cancel_event)
        logger.warning(
            "Image optimization for %s timed out after %.1fms (deadline %gs); job abandoned",
            Path(destination_path).name,
            (time.perf_counter() - started) * 1000,
            deadline,
        )
        return OptimizationResult(
            error=ImageTimeoutError(
                timeout=deadline,
                context={"destination": str(destination_path)},
            )
        )

    @staticmethod
    def _abandon(
        job: concurrent.futures.Future,
        waiter: asyncio.Future,
        cancel_event: threading.Event,
    ) -> None:
        cancel_event.set()
        waiter.add_done_callback(_consume_outcome)
        # Still queued behind other uploads: it never has to start at all
        if job.cancel():
            return
        job.add_done_callback(_discard_abandoned_output)

    def shutdown(self) -> None:
        """Stop the worker pool without waiting for abandoned jobs."""
        self._executor.shutdown(wait=False, cancel_futures=True)


def _consume_outcome(future: "asyncio.Future[OptimizationResult]") -> None:
    # Marks an abandoned job's exception as retrieved so asyncio stays quiet
    if not future.cancelled():
        future.exception()


def _discard_abandoned_output(job: "concurrent.futures.Future[OptimizationResult]") -> None:
    """Remove a file an abandoned job managed to write after its deadline."""
    if job.cancelled():
        return
    error = job.exception()
    if error is not None:
        logger.error("Abandoned image job crashed: %s", error)
        return
    result = job.result()
    if result.ok:
        with suppress(OSError):
            os.remove(result.path)
        logger.info("Removed late output of abandoned image job: %s", Path(result.path).name)


def create_upload_orchestrator() -> UploadOrchestrator:
    """Wire pool → optimizer → orchestrator from settings."""
    pool = BufferPool(
        max_idle=settings.buffer_pool_max_idle,
        max_buffer_bytes=settings.buffer_pool_max_buffer_bytes,
    )
    optimizer = ImageOptimizer(
        buffer_pool=pool,
        max_size=(settings.image_max_width, settings.image_max_height),
        jpeg_quality=settings.image_jpeg_quality,
        png_compress_level=settings.image_png_compress_level,
    )
    return UploadOrchestrator(
        optimizer=optimizer,
        timeout=settings.image_timeout_seconds,
        max_workers=settings.image_workers,
    )


# ── Singleton Instance ────────────────────────────────────────────────────
# One worker pool and one buffer pool for the whole process
upload_orchestrator = create_upload_orchestrator()
