"""
chatlink - connection lifecycle for a real-time chat client.

Coordinates the persistent websocket connection under changing
authentication state: user switches, token refresh and session resumption.
"""

__version__ = "0.1.0"

from chatlink.auth import AuthenticationRepository
from chatlink.client import ChatClient
from chatlink.collaborators import (
    BuilderWorkerFactory,
    InMemoryStore,
    LocalStore,
    PendingRequestQueue,
    RecoverySync,
    RequestQueue,
    SyncRepository,
    WorkerFactory,
)
from chatlink.config import ChatClientConfig, ClientMode
from chatlink.connection import (
    ClientState,
    ConnectEndpoint,
    ConnectionCoordinator,
    ConnectionStatus,
    ConnectionStatusKind,
    DisconnectionReason,
    DisconnectionSource,
    LivenessHandle,
    ResetDecision,
    SessionSnapshot,
    Transport,
    WebSocketTransport,
    needs_reset,
)
from chatlink.errors import (
    ClientDeallocatedError,
    ClientError,
    ClientNotActiveError,
    ConnectionNotSuccessfulError,
    ConnectionWasNotInitiatedError,
    InvalidTokenError,
    MissingConnectionIdError,
    MissingTokenError,
    MissingTokenProviderError,
    NotConnectedError,
    TokenExpiredError,
)
from chatlink.tokens import (
    Token,
    TokenProvider,
    UserInfo,
    static_token_provider,
)
from chatlink.waiters import WaiterRegistry

__all__ = [
    "__version__",
    # Client
    "ChatClient",
    "ChatClientConfig",
    "ClientMode",
    # Identity
    "Token",
    "TokenProvider",
    "UserInfo",
    "static_token_provider",
    "AuthenticationRepository",
    # Waiters
    "WaiterRegistry",
    # Connection
    "ConnectionCoordinator",
    "ConnectionStatus",
    "ConnectionStatusKind",
    "DisconnectionReason",
    "DisconnectionSource",
    "ClientState",
    "LivenessHandle",
    "SessionSnapshot",
    "ConnectEndpoint",
    "ResetDecision",
    "needs_reset",
    "Transport",
    "WebSocketTransport",
    # Collaborators
    "RequestQueue",
    "SyncRepository",
    "LocalStore",
    "WorkerFactory",
    "PendingRequestQueue",
    "RecoverySync",
    "InMemoryStore",
    "BuilderWorkerFactory",
    # Errors
    "ClientError",
    "ClientNotActiveError",
    "ConnectionNotSuccessfulError",
    "MissingTokenError",
    "MissingConnectionIdError",
    "ClientDeallocatedError",
    "ConnectionWasNotInitiatedError",
    "InvalidTokenError",
    "TokenExpiredError",
    "MissingTokenProviderError",
    "NotConnectedError",
]
