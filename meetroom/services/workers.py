"""Media worker pool with round-robin room assignment."""
from __future__ import annotations

import asyncio
import itertools
import logging
import os
from functools import partial
from typing import Callable, Sequence

from ..core.config import Settings
from ..media.engine import MediaEngine, Worker
from ..media.local import LocalMediaEngine

logger = logging.getLogger(__name__)


def load_engine(name: str) -> MediaEngine:
    """Return the media engine registered under ``name``."""

    if name == "local":
        logger.warning(
            "Using the in-process local media engine: signaling works but no media is forwarded"
        )
        return LocalMediaEngine()
    raise ValueError(f"Unknown media engine {name!r}")


def _exit_process() -> None:
    os._exit(1)


class WorkerPool:
    """Fixed set of media workers handed out to rooms in rotation.

    A worker death is fatal for every router bound to it, so the pool does not
    try to recover: it logs and terminates the process after a grace delay and
    leaves restarting to the supervisor.
    """

    def __init__(
        self,
        workers: Sequence[Worker] = (),
        *,
        grace_seconds: float = 2.0,
        terminate: Callable[[], None] = _exit_process,
    ) -> None:
        self._workers: list[Worker] = []
        self._cursor = itertools.count()
        self._grace_seconds = grace_seconds
        self._terminate = terminate
        self._exit_handle: asyncio.TimerHandle | None = None
        for worker in workers:
            self._watch(worker)

    @classmethod
    async def start(
        cls,
        engine: MediaEngine,
        settings: Settings,
        *,
        terminate: Callable[[], None] = _exit_process,
    ) -> "WorkerPool":
        """Spawn ``settings.num_workers`` workers and watch their health."""

        pool = cls(grace_seconds=settings.worker_death_grace_seconds, terminate=terminate)
        for _ in range(settings.num_workers):
            worker = await engine.create_worker(
                rtc_min_port=settings.rtc_min_port,
                rtc_max_port=settings.rtc_max_port,
            )
            pool._watch(worker)
        logger.info("Started %d media worker(s)", len(pool))
        return pool

    def __len__(self) -> int:
        return len(self._workers)

    @property
    def workers(self) -> tuple[Worker, ...]:
        return tuple(self._workers)

    def _watch(self, worker: Worker) -> None:
        worker.on("died", partial(self._on_worker_died, worker))
        self._workers.append(worker)

    def assign_next(self) -> Worker:
        """Return the next worker in rotation."""

        if not self._workers:
            raise RuntimeError("WorkerPool has no workers")
        return self._workers[next(self._cursor) % len(self._workers)]

    def _on_worker_died(self, worker: Worker, error: BaseException | None = None) -> None:
        logger.error(
            "Media worker died, exiting in %.1f seconds... [pid:%s] %s",
            self._grace_seconds,
            worker.pid,
            error or "",
        )
        if self._exit_handle is not None:
            return
        loop = asyncio.get_running_loop()
        self._exit_handle = loop.call_later(self._grace_seconds, self._terminate)

    def close(self) -> None:
        if self._exit_handle is not None:
            self._exit_handle.cancel()
            self._exit_handle = None
        for worker in self._workers:
            worker.close()
        logger.info("Closed %d media worker(s)", len(self._workers))
