"""
Connection status model.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class DisconnectionReason(StrEnum):
    """Who initiated a disconnection."""

    USER_INITIATED = "user_initiated"
    SERVER_INITIATED = "server_initiated"
    SYSTEM_INITIATED = "system_initiated"


@dataclass(frozen=True)
class DisconnectionSource:
    """Reason for a disconnection, with the server error if there was one."""

    reason: DisconnectionReason
    error: BaseException | None = None

    @classmethod
    def user_initiated(cls) -> DisconnectionSource:
        return cls(DisconnectionReason.USER_INITIATED)

    @classmethod
    def server_initiated(cls, error: BaseException | None = None) -> DisconnectionSource:
        return cls(DisconnectionReason.SERVER_INITIATED, error)

    @classmethod
    def system_initiated(cls) -> DisconnectionSource:
        return cls(DisconnectionReason.SYSTEM_INITIATED)

    @property
    def server_error(self) -> BaseException | None:
        if self.reason is DisconnectionReason.SERVER_INITIATED:
            return self.error
        return None


class ConnectionStatusKind(StrEnum):
    INITIALIZED = "initialized"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class ConnectionStatus:
    """Transport connection status.

    ``connection_id`` is set only for ``connected``; ``source`` only for
    ``disconnected``.
    """

    kind: ConnectionStatusKind
    connection_id: str | None = None
    source: DisconnectionSource | None = None

    @classmethod
    def initialized(cls) -> ConnectionStatus:
        return cls(ConnectionStatusKind.INITIALIZED)

    @classmethod
    def connecting(cls) -> ConnectionStatus:
        return cls(ConnectionStatusKind.CONNECTING)

    @classmethod
    def connected(cls, connection_id: str) -> ConnectionStatus:
        return cls(ConnectionStatusKind.CONNECTED, connection_id=connection_id)

    @classmethod
    def disconnecting(cls) -> ConnectionStatus:
        return cls(ConnectionStatusKind.DISCONNECTING)

    @classmethod
    def disconnected(cls, source: DisconnectionSource | None = None) -> ConnectionStatus:
        return cls(ConnectionStatusKind.DISCONNECTED, source=source or DisconnectionSource.system_initiated())

    @property
    def is_connected(self) -> bool:
        return self.kind is ConnectionStatusKind.CONNECTED

    @property
    def is_active(self) -> bool:
        """Connected or on the way to being connected."""
        return self.kind in (ConnectionStatusKind.CONNECTED, ConnectionStatusKind.CONNECTING)

    @property
    def is_disconnected(self) -> bool:
        return self.kind is ConnectionStatusKind.DISCONNECTED

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"status": self.kind.value}
        if self.connection_id is not None:
            data["connection_id"] = self.connection_id
        if self.source is not None:
            data["reason"] = self.source.reason.value
            if self.source.error is not None:
                data["error"] = str(self.source.error)
        return data
