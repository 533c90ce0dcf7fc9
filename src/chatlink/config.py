"""
Client configuration.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class ClientMode(StrEnum):
    """Whether the client may open a live transport connection."""

    ACTIVE = "active"
    PASSIVE = "passive"


#: Default websocket base URL.
DEFAULT_BASE_URL = "wss://chat.example.io"


@dataclass(frozen=True)
class ChatClientConfig:
    """Configuration for a ``ChatClient``.

    The mode is fixed for the lifetime of the client. Timeouts are in
    seconds; ``None`` waits indefinitely.
    """

    api_key: str
    base_url: str = DEFAULT_BASE_URL
    mode: ClientMode = ClientMode.ACTIVE
    token_timeout: float | None = 10.0
    connection_id_timeout: float | None = 10.0
    heartbeat_interval: float = 25.0

    @property
    def is_active(self) -> bool:
        return self.mode is ClientMode.ACTIVE

    def to_dict(self) -> dict[str, Any]:
        return {
            "api_key": self.api_key,
            "base_url": self.base_url,
            "mode": self.mode.value,
            "token_timeout": self.token_timeout,
            "connection_id_timeout": self.connection_id_timeout,
            "heartbeat_interval": self.heartbeat_interval,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatClientConfig:
        return cls(
            api_key=data["api_key"],
            base_url=data.get("base_url", DEFAULT_BASE_URL),
            mode=ClientMode(data.get("mode", ClientMode.ACTIVE.value)),
            token_timeout=data.get("token_timeout", 10.0),
            connection_id_timeout=data.get("connection_id_timeout", 10.0),
            heartbeat_interval=data.get("heartbeat_interval", 25.0),
        )
