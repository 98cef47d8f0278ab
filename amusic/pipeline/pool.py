"""Bounded-concurrency worker pool for track processing.

A fixed number of worker tasks pull jobs from a FIFO queue, so no more than
``max_workers`` tracks are ever processed at once. ``submit`` returns a
future per track. ``shutdown`` closes intake immediately, then either lets
the workers drain everything already accepted (the default) or fails the
jobs still waiting in the queue with :class:`PoolShutdownError`, and returns
once every worker has exited.

The pool does not deduplicate paths: callers must not submit the same file
twice while the first submission is still pending.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from amusic.audio.tags import TagCodec
from amusic.identify.acoustid import AcoustIDClient
from amusic.pipeline.track import TrackProcessingOptions, TrackProcessingResult, process_track
from amusic.settings import settings

logger = logging.getLogger(__name__)


class PoolShutdownError(Exception):
    """Raised when work is submitted to, or abandoned by, a shut-down pool."""


@dataclass
class PoolStatus:
    active: int
    queued: int
    shutting_down: bool


@dataclass
class _Job:
    file_path: Path
    options: TrackProcessingOptions
    future: asyncio.Future[TrackProcessingResult]


class TrackProcessorPool:
    """Process tracks on a fixed number of asyncio worker tasks."""

    def __init__(
        self,
        max_workers: int | None = None,
        *,
        codec: TagCodec,
        client: AcoustIDClient | None = None,
    ) -> None:
        self.max_workers = max(1, max_workers or settings.default_concurrency)
        self._codec = codec
        self._client = client
        self._queue: asyncio.Queue[_Job | None] = asyncio.Queue()
        self._workers: list[asyncio.Task[None]] = []
        self._active = 0
        self._queued = 0
        self._shutting_down = False

    def _ensure_workers(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(), name=f"track-worker-{i}")
            for i in range(self.max_workers)
        ]

    def submit(
        self, file_path: Path | str, options: TrackProcessingOptions
    ) -> asyncio.Future[TrackProcessingResult]:
        """Queue a track for processing.

        Must be called from a running event loop.

        Returns:
            Future resolving to the track's TrackProcessingResult.

        Raises:
            PoolShutdownError: If :meth:`shutdown` has been called.
        """
        if self._shutting_down:
            raise PoolShutdownError("Processor pool is shutting down")

        future: asyncio.Future[TrackProcessingResult] = (
            asyncio.get_running_loop().create_future()
        )
        self._queue.put_nowait(_Job(Path(file_path), options, future))
        self._queued += 1
        self._ensure_workers()
        return future

    async def _worker(self) -> None:
        while True:
            job = await self._queue.get()
            if job is None:
                self._queue.task_done()
                return
            self._queued -= 1
            if job.future.done():
                # Cancelled by the caller
                self._queue.task_done()
                continue

            self._active += 1
            try:
                result = await process_track(
                    job.file_path, job.options, codec=self._codec, client=self._client
                )
            except Exception as exc:
                logger.exception("Worker failed processing %s", job.file_path)
                if not job.future.done():
                    job.future.set_exception(exc)
            else:
                if not job.future.done():
                    job.future.set_result(result)
            finally:
                self._active -= 1
                self._queue.task_done()

    async def shutdown(self, *, cancel_pending: bool = False) -> None:
        """Stop accepting work and wait for the workers to finish.

        Args:
            cancel_pending: Fail jobs that have not started yet instead of
                processing them.
        """
        self._shutting_down = True

        if cancel_pending:
            abandoned = 0
            while not self._queue.empty():
                job = self._queue.get_nowait()
                self._queue.task_done()
                if job is None:
                    continue
                self._queued -= 1
                if not job.future.done():
                    job.future.set_exception(
                        PoolShutdownError(f"Pool shut down before {job.file_path} started")
                    )
                    abandoned += 1
            if abandoned:
                logger.warning("Pool shutdown abandoned %d queued track(s)", abandoned)

        for _ in self._workers:
            self._queue.put_nowait(None)
        if self._workers:
            await asyncio.gather(*self._workers)
        self._workers = []

    def status(self) -> PoolStatus:
        return PoolStatus(
            active=self._active,
            queued=self._queued,
            shutting_down=self._shutting_down,
        )
