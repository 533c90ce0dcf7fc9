"""
Waiter registry: provide a value now, or wait until it becomes known.

Used for the auth token and for the connection id. Producers (the
transport's status listener, token refreshes) and consumers (pending
requests) may run concurrently, so every mutation happens under a single
re-entrant lock. Owners that need "set value AND release waiters" to look
atomic hold ``registry.lock`` around both steps.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from collections.abc import Callable
from typing import Generic, TypeVar

from .errors import ClientError

logger = logging.getLogger(__name__)

T = TypeVar("T")

WaiterCallback = Callable[[T | None], None]


def _resolve(future: asyncio.Future, value) -> None:
    if not future.done():
        future.set_result(value)


class WaiterRegistry(Generic[T]):
    """Insertion-ordered set of callbacks awaiting a value of type ``T``.

    ``None`` is the "absent" value: it tells waiters the value they were
    waiting for will not come.
    """

    def __init__(self, name: str, missing_error: type[ClientError]) -> None:
        self._name = name
        self._missing_error = missing_error
        self._waiters: dict[str, WaiterCallback] = {}
        self._lock = threading.RLock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def __len__(self) -> int:
        with self._lock:
            return len(self._waiters)

    def register(self, callback: WaiterCallback) -> str:
        """Register ``callback`` and return its waiter id."""
        waiter_id = uuid.uuid4().hex
        with self._lock:
            self._waiters[waiter_id] = callback
        return waiter_id

    def invalidate(self, waiter_id: str) -> bool:
        """Remove a waiter without invoking it.

        Returns:
            True if the waiter was still registered.
        """
        with self._lock:
            return self._waiters.pop(waiter_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._waiters.clear()

    def complete_all(self, value: T | None) -> int:
        """Invoke every registered callback once with ``value`` and empty the registry.

        Returns:
            Number of waiters completed.
        """
        with self._lock:
            waiters = list(self._waiters.values())
            self._waiters.clear()

            for callback in waiters:
                try:
                    callback(value)
                except Exception:
                    logger.exception("%s waiter callback failed", self._name)

        if waiters:
            logger.debug(
                "Completed %d %s waiter(s) with %s",
                len(waiters),
                self._name,
                "a value" if value is not None else "absence",
            )
        return len(waiters)

    def wait(self) -> tuple[str, asyncio.Future]:
        """Register a waiter backed by a future on the running loop.

        The future may be resolved from any thread.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()

        def callback(value: T | None) -> None:
            if loop.is_closed():
                return
            loop.call_soon_threadsafe(_resolve, future, value)

        return self.register(callback), future

    async def provide(self, current: Callable[[], T | None], timeout: float | None = None) -> T:
        """Return the current value, waiting for it if it is not known yet.

        Args:
            current: Reads the current value; evaluated under the lock.
            timeout: Seconds to wait, or None to wait indefinitely.

        Raises:
            The registry's missing error if the wait timed out or the value
            was resolved as absent.
        """
        with self._lock:
            value = current()
            if value is not None:
                return value
            waiter_id, future = self.wait()

        try:
            value = await asyncio.wait_for(future, timeout)
        except TimeoutError:
            self.invalidate(waiter_id)
            raise self._missing_error(f"Timed out after {timeout}s waiting for {self._name}") from None
        except asyncio.CancelledError:
            self.invalidate(waiter_id)
            raise

        if value is None:
            raise self._missing_error(f"No {self._name} available")
        return value
