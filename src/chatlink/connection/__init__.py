"""
Connection lifecycle for the chat client.

Submodules:
- status.py: ConnectionStatus, DisconnectionSource
- state.py: ClientState, LivenessHandle, SessionSnapshot
- endpoint.py: ConnectEndpoint
- reset.py: ResetDecision, needs_reset
- transport.py: Transport protocol, WebSocketTransport
- coordinator.py: ConnectionCoordinator
"""

from .coordinator import ConnectionCoordinator
from .endpoint import ConnectEndpoint
from .reset import ResetDecision, needs_reset
from .state import SNAPSHOT_VERSION, ClientState, LivenessHandle, SessionSnapshot
from .status import (
    ConnectionStatus,
    ConnectionStatusKind,
    DisconnectionReason,
    DisconnectionSource,
)
from .transport import TOKEN_EXPIRED_CODE, Transport, WebSocketTransport

__all__ = [
    # Coordinator
    "ConnectionCoordinator",
    # Status
    "ConnectionStatus",
    "ConnectionStatusKind",
    "DisconnectionReason",
    "DisconnectionSource",
    # State
    "ClientState",
    "LivenessHandle",
    "SessionSnapshot",
    "SNAPSHOT_VERSION",
    # Endpoint
    "ConnectEndpoint",
    # Reset
    "ResetDecision",
    "needs_reset",
    # Transport
    "Transport",
    "WebSocketTransport",
    "TOKEN_EXPIRED_CODE",
]
