"""
Collaborators consumed by the connection coordinator.

Each concern is a protocol so applications can plug in their own HTTP
queue, sync engine, store and workers. The default implementations here
are small in-memory versions.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine, Iterable
from typing import Any, Protocol, runtime_checkable

from .errors import NotConnectedError

logger = logging.getLogger(__name__)


@runtime_checkable
class RequestQueue(Protocol):
    def flush_pending_requests(self) -> None: ...


@runtime_checkable
class SyncRepository(Protocol):
    def cancel_recovery_flow(self) -> None: ...


@runtime_checkable
class LocalStore(Protocol):
    async def wipe_all(self) -> None: ...


@runtime_checkable
class WorkerFactory(Protocol):
    @property
    def workers(self) -> list[Any]: ...

    def create_workers(self) -> list[Any]: ...

    def remove_all_workers(self) -> None: ...


class PendingRequestQueue:
    """Requests parked until the connection is usable.

    ``flush_pending_requests`` fails every parked request with
    ``NotConnectedError`` so callers waiting on them are released.
    """

    def __init__(self) -> None:
        self._pending: list[asyncio.Future] = []

    def __len__(self) -> int:
        return len(self._pending)

    def park(self) -> asyncio.Future:
        future = asyncio.get_running_loop().create_future()
        self._pending.append(future)
        return future

    def flush_pending_requests(self) -> None:
        pending, self._pending = self._pending, []
        flushed = 0
        for future in pending:
            if not future.done():
                future.set_exception(NotConnectedError("Client disconnected before the request was sent"))
                flushed += 1
        if flushed:
            logger.debug("Flushed %d pending request(s)", flushed)


class RecoverySync:
    """Tracks the running recovery (missed events catch-up) task, if any."""

    def __init__(self) -> None:
        self._task: asyncio.Task | None = None
        self._cancellations = 0

    @property
    def is_recovering(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def cancellations(self) -> int:
        return self._cancellations

    def start_recovery(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        self.cancel_recovery_flow()
        self._task = asyncio.get_running_loop().create_task(coro)
        return self._task

    def cancel_recovery_flow(self) -> None:
        if self.is_recovering:
            self._task.cancel()
            self._cancellations += 1
            logger.debug("Recovery flow cancelled")
        self._task = None


class InMemoryStore:
    """Dict-backed local store."""

    def __init__(self) -> None:
        self.data: dict[str, Any] = {}
        self.wipe_count = 0

    async def wipe_all(self) -> None:
        self.data.clear()
        self.wipe_count += 1


WorkerBuilder = Callable[[], Any]


class BuilderWorkerFactory:
    """Builds background workers from builder callables.

    Workers exposing ``close()`` are closed when removed.
    """

    def __init__(self, builders: Iterable[WorkerBuilder] = ()) -> None:
        self._builders = list(builders)
        self._workers: list[Any] = []

    @property
    def workers(self) -> list[Any]:
        return list(self._workers)

    def create_workers(self) -> list[Any]:
        self.remove_all_workers()
        self._workers = [build() for build in self._builders]
        logger.debug("Created %d background worker(s)", len(self._workers))
        return self.workers

    def remove_all_workers(self) -> None:
        workers, self._workers = self._workers, []
        for worker in workers:
            close = getattr(worker, "close", None)
            if callable(close):
                close()
