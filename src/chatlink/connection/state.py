"""
Connection and session state.

``ClientState`` is the single mutable record of "who is connected, and
how". The client owns it and exposes it read-only; only the connection
coordinator mutates it. ``SessionSnapshot`` is the persistable part used to
resume a session after relaunch.
"""

from __future__ import annotations

import json
import logging
import time
import weakref
from dataclasses import dataclass
from typing import Any

from ..errors import ClientDeallocatedError, MissingConnectionIdError
from ..tokens import Token, UserInfo
from ..waiters import WaiterRegistry
from .status import ConnectionStatus, ConnectionStatusKind

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


class LivenessHandle:
    """Explicit "is the owner still alive" flag checked before callbacks proceed."""

    def __init__(self) -> None:
        self._alive = True

    @property
    def alive(self) -> bool:
        return self._alive

    def invalidate(self) -> None:
        self._alive = False

    def ensure_alive(self) -> None:
        if not self._alive:
            raise ClientDeallocatedError("Client has been closed")


class ClientState:
    """Connection status, connection id and the waiters for it."""

    def __init__(self) -> None:
        self._status = ConnectionStatus.initialized()
        self._connection_id: str | None = None
        self._last_disconnect_error: BaseException | None = None
        self._current_user: UserInfo | None = None
        self._controllers: weakref.WeakSet = weakref.WeakSet()
        self._connection_waiters: WaiterRegistry[str] = WaiterRegistry("connection id", MissingConnectionIdError)

    @property
    def connection_status(self) -> ConnectionStatus:
        return self._status

    @property
    def connection_id(self) -> str | None:
        return self._connection_id

    @property
    def last_disconnect_error(self) -> BaseException | None:
        return self._last_disconnect_error

    @property
    def current_user(self) -> UserInfo | None:
        return self._current_user

    @property
    def connection_waiters(self) -> WaiterRegistry[str]:
        return self._connection_waiters

    def apply_status(self, status: ConnectionStatus, *, release_waiters: bool = True) -> None:
        """Record a status reported by the transport.

        ``connected`` stores the id and hands it to the waiters. A
        disconnection clears the id and, unless ``release_waiters`` is
        False, tells the waiters no id is coming.
        """
        with self._connection_waiters.lock:
            previous = self._status.kind
            self._status = status

            if status.kind is ConnectionStatusKind.CONNECTED:
                self._connection_id = status.connection_id
                self._last_disconnect_error = None
                self._connection_waiters.complete_all(status.connection_id)
            elif status.kind is ConnectionStatusKind.DISCONNECTED:
                self._connection_id = None
                if status.source is not None and status.source.server_error is not None:
                    self._last_disconnect_error = status.source.server_error
                if release_waiters:
                    self._connection_waiters.complete_all(None)
            else:
                self._connection_id = None

        if previous is not status.kind:
            logger.debug("Connection status %s -> %s", previous.value, status.kind.value)

    def clear_connection_id(self) -> None:
        """Drop the connection id and release every connection id waiter with absence."""
        with self._connection_waiters.lock:
            self._connection_id = None
            self._connection_waiters.complete_all(None)

    def set_current_user(self, user_info: UserInfo | None) -> None:
        self._current_user = user_info

    @property
    def active_controllers(self) -> list[Any]:
        return list(self._controllers)

    def track_controller(self, controller: Any) -> None:
        self._controllers.add(controller)

    def clear_controllers(self) -> None:
        """Stop tracking controllers created for the previous user."""
        self._controllers.clear()


@dataclass
class SessionSnapshot:
    """
    Serializable identity for resuming a session.

    Restoring a snapshot installs the token without connecting; a
    provider-less reload then reconnects as that user.
    """

    version: int = SNAPSHOT_VERSION
    user: dict[str, Any] | None = None
    token: str = ""
    user_id: str = ""
    expiration: float | None = None
    saved_at: float = 0.0

    @classmethod
    def capture(cls, user_info: UserInfo | None, token: Token) -> SessionSnapshot:
        return cls(
            user=user_info.to_dict() if user_info is not None else None,
            token=token.raw_value,
            user_id=token.user_id,
            expiration=token.expiration,
            saved_at=time.time(),
        )

    @property
    def user_info(self) -> UserInfo:
        if self.user is not None:
            return UserInfo.from_dict(self.user)
        return UserInfo(id=self.user_id)

    @property
    def token_value(self) -> Token:
        return Token(raw_value=self.token, user_id=self.user_id, expiration=self.expiration)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "user": self.user,
            "token": self.token,
            "user_id": self.user_id,
            "expiration": self.expiration,
            "saved_at": self.saved_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionSnapshot:
        return cls(
            version=data.get("version", 1),
            user=data.get("user"),
            token=data.get("token", ""),
            user_id=data.get("user_id", ""),
            expiration=data.get("expiration"),
            saved_at=data.get("saved_at", 0.0),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_json(cls, json_str: str) -> SessionSnapshot:
        return cls.from_dict(json.loads(json_str))
