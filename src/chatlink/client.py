"""
Chat client facade.

``ChatClient`` owns the connection state and the collaborators and exposes
the current identity and connection read-only. Every state change goes
through its ``ConnectionCoordinator``.

Example::

    client = ChatClient(ChatClientConfig(api_key="key"))
    await client.connect_user(UserInfo(id="alice"), token_provider=fetch_token)
    connection_id = await client.provide_connection_id()
    ...
    await client.close()
"""

from __future__ import annotations

import logging
from typing import Any

from .auth import AuthenticationRepository
from .collaborators import (
    BuilderWorkerFactory,
    InMemoryStore,
    LocalStore,
    PendingRequestQueue,
    RecoverySync,
    RequestQueue,
    SyncRepository,
    WorkerBuilder,
    WorkerFactory,
)
from .config import ChatClientConfig, ClientMode
from .connection.coordinator import ConnectionCoordinator
from .connection.state import ClientState, LivenessHandle, SessionSnapshot
from .connection.status import ConnectionStatus, DisconnectionSource
from .connection.transport import StatusListener, Transport, WebSocketTransport
from .errors import ClientDeallocatedError, MissingTokenError
from .tokens import Token, TokenProvider, UserInfo, static_token_provider

logger = logging.getLogger(__name__)


class ChatClient:
    """Entry point of the SDK's connection lifecycle."""

    def __init__(
        self,
        config: ChatClientConfig,
        *,
        transport: Transport | None = None,
        request_queue: RequestQueue | None = None,
        sync_repository: SyncRepository | None = None,
        store: LocalStore | None = None,
        worker_factory: WorkerFactory | None = None,
        worker_builders: list[WorkerBuilder] | None = None,
        auth: AuthenticationRepository | None = None,
    ) -> None:
        self._config = config
        self._liveness = LivenessHandle()
        self._state = ClientState()

        self.auth = auth or AuthenticationRepository(token_timeout=config.token_timeout)
        self.transport: Transport = transport or WebSocketTransport(
            token_supplier=lambda: self.auth.current_token,
            heartbeat=config.heartbeat_interval,
        )
        self.request_queue: RequestQueue = request_queue or PendingRequestQueue()
        self.sync_repository: SyncRepository = sync_repository or RecoverySync()
        self.store: LocalStore = store or InMemoryStore()
        self.worker_factory: WorkerFactory = worker_factory or BuilderWorkerFactory(worker_builders or [])

        self._coordinator = ConnectionCoordinator(self, self._state, self._liveness)
        self.transport.add_status_listener(self._coordinator.handle_connection_status)

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def config(self) -> ChatClientConfig:
        return self._config

    @property
    def mode(self) -> ClientMode:
        return self._config.mode

    @property
    def is_active(self) -> bool:
        return self._config.is_active

    @property
    def is_closed(self) -> bool:
        return not self._liveness.alive

    @property
    def current_user_id(self) -> str | None:
        return self.auth.current_user_id

    @property
    def current_token(self) -> Token | None:
        return self.auth.current_token

    @property
    def current_user(self) -> UserInfo | None:
        return self._state.current_user

    @property
    def connection_id(self) -> str | None:
        return self._state.connection_id

    @property
    def connection_status(self) -> ConnectionStatus:
        return self._state.connection_status

    @property
    def connection_waiter_count(self) -> int:
        return len(self._state.connection_waiters)

    @property
    def background_workers(self) -> list[Any]:
        return self.worker_factory.workers

    @property
    def active_controllers(self) -> list[Any]:
        return self._state.active_controllers

    @property
    def coordinator(self) -> ConnectionCoordinator:
        return self._coordinator

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect_user(
        self,
        user_info: UserInfo,
        token: Token | None = None,
        *,
        token_provider: TokenProvider | None = None,
    ) -> None:
        """Connect as ``user_info`` with a static token or a token provider."""
        if token is None and token_provider is None:
            raise MissingTokenError("connect_user needs a token or a token provider")
        provider = token_provider or static_token_provider(token)
        await self._coordinator.reload_user_if_needed(user_info, provider)

    async def connect_guest_user(self, user_info: UserInfo | None = None) -> None:
        """Connect without credentials as a generated (or given) user."""
        token = Token.anonymous(user_info.id if user_info is not None else None)
        await self._coordinator.reload_user_if_needed(user_info, static_token_provider(token))

    async def reload_user_if_needed(
        self,
        user_info: UserInfo | None = None,
        token_provider: TokenProvider | None = None,
    ) -> None:
        await self._coordinator.reload_user_if_needed(user_info, token_provider)

    async def prepare_environment(self, user_info: UserInfo | None, new_token: Token) -> None:
        await self._coordinator.prepare_environment(user_info, new_token)

    async def reconnect(self) -> None:
        """Connect again as the current user after ``disconnect``."""
        await self._coordinator.connect()

    async def disconnect(self) -> None:
        await self._coordinator.disconnect(DisconnectionSource.user_initiated())

    async def logout(self) -> None:
        """Disconnect and forget the current user and everything stored for them."""
        await self._coordinator.disconnect(DisconnectionSource.user_initiated())
        self.worker_factory.remove_all_workers()
        self._state.clear_controllers()
        self._state.set_current_user(None)
        await self.store.wipe_all()
        self.auth.clear()
        logger.info("Logged out")

    # ------------------------------------------------------------------
    # Waiting for values
    # ------------------------------------------------------------------

    async def provide_token(self, timeout: float | None = None) -> Token:
        return await self.auth.provide_token(timeout)

    async def provide_connection_id(self, timeout: float | None = None) -> str:
        return await self._state.connection_waiters.provide(
            lambda: self._state.connection_id,
            timeout if timeout is not None else self._config.connection_id_timeout,
        )

    def complete_connection_id_waiters(self, connection_id: str | None) -> int:
        with self._state.connection_waiters.lock:
            return self._state.connection_waiters.complete_all(connection_id)

    def complete_token_waiters(self, token: Token | None) -> int:
        return self.auth.complete_token_waiters(token)

    # ------------------------------------------------------------------
    # Observers and persistence
    # ------------------------------------------------------------------

    def track_controller(self, controller: Any) -> None:
        """Track a controller for the current user; dropped when the user changes."""
        self._state.track_controller(controller)

    def add_status_listener(self, listener: StatusListener) -> None:
        """Observe status changes after the client state has been updated."""
        self.transport.add_status_listener(listener)

    def snapshot(self) -> SessionSnapshot | None:
        token = self.auth.current_token
        if token is None:
            return None
        return SessionSnapshot.capture(self._state.current_user, token)

    def restore(self, snapshot: SessionSnapshot) -> None:
        """Install a saved identity; ``reload_user_if_needed()`` then resumes it."""
        if self.is_closed:
            raise ClientDeallocatedError("Client has been closed")
        self.auth.set_token(snapshot.token_value, complete_waiters=False)
        self._state.set_current_user(snapshot.user_info)
        logger.debug("Restored session for user %s", snapshot.user_id)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Close the client; in-flight operations end with an error instead of hanging."""
        if self.is_closed:
            return
        self._liveness.invalidate()
        self._coordinator.shutdown()
        self._state.clear_connection_id()
        self.auth.complete_token_waiters(None)
        self.request_queue.flush_pending_requests()
        if self._state.connection_status.is_active:
            await self.transport.disconnect(DisconnectionSource.user_initiated())
        self.worker_factory.remove_all_workers()
        logger.info("Client closed")

    async def __aenter__(self) -> ChatClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
