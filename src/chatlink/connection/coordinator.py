"""
Connection coordinator: the disconnect / connect / reload state machine.

Decides, for a requested identity change and the current connection
status, which steps run and in which order:

    resolve token -> [disconnect if the user changed] -> prepare environment
    (install token, release token waiters, wipe store, rebuild workers,
    assign endpoint) -> connect (wait for a connection id)

Every operation is a coroutine that returns on success and raises a
``ClientError`` (or the provider's / store's own error) on failure.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import Coroutine
from typing import TYPE_CHECKING, Any

from ..errors import (
    ClientDeallocatedError,
    ClientNotActiveError,
    ConnectionNotSuccessfulError,
    ConnectionWasNotInitiatedError,
    InvalidTokenError,
    TokenExpiredError,
)
from ..tokens import Token, TokenProvider, UserInfo
from .endpoint import ConnectEndpoint
from .reset import needs_reset
from .state import ClientState, LivenessHandle
from .status import ConnectionStatus, DisconnectionSource

if TYPE_CHECKING:
    from ..client import ChatClient

logger = logging.getLogger(__name__)

#: Expired-token refreshes tried in a row before connecting gives up.
MAX_TOKEN_REFRESH_ATTEMPTS = 3


class ConnectionCoordinator:
    """Runs connection lifecycle operations for one ``ChatClient``.

    The coordinator keeps only a weak reference to its client and checks
    the client's liveness handle after every suspension, so a client
    closed mid-operation ends the operation with ``ClientDeallocatedError``
    instead of leaving it hanging.

    Reloads are single-flight: concurrent ``reload_user_if_needed`` calls
    queue on a lock and run one after another, each against the state the
    previous one left behind.
    """

    def __init__(self, client: ChatClient, state: ClientState, liveness: LivenessHandle) -> None:
        self._client_ref = weakref.ref(client)
        self._state = state
        self._liveness = liveness
        self._reload_lock = asyncio.Lock()
        self._background: set[asyncio.Task] = set()
        self._expired_refreshes = 0

    @property
    def is_reload_pending(self) -> bool:
        return self._reload_lock.locked()

    def _client(self) -> ChatClient:
        client = self._client_ref()
        if client is None or not self._liveness.alive:
            raise ClientDeallocatedError("Client has been closed")
        return client

    # ------------------------------------------------------------------
    # Disconnect / connect
    # ------------------------------------------------------------------

    async def disconnect(self, source: DisconnectionSource | None = None) -> None:
        """Release pending work and close the transport if it is open.

        Pending requests are flushed and the recovery flow is cancelled on
        every call, whatever the transport state. Afterwards there is no
        connection id and every connection id waiter got absence.
        """
        source = source or DisconnectionSource.user_initiated()
        client = self._client()

        client.request_queue.flush_pending_requests()
        client.sync_repository.cancel_recovery_flow()

        status = self._state.connection_status
        if not client.config.is_active or not status.is_active:
            logger.debug("Disconnect without open transport (status=%s)", status.kind.value)
            if status.is_disconnected:
                self._state.clear_connection_id()
            else:
                self._state.apply_status(ConnectionStatus.disconnected(source))
            return

        logger.info("Disconnecting transport (%s)", source.reason.value)
        await client.transport.disconnect(source)
        self._state.clear_connection_id()

    async def connect(self) -> None:
        """Open the transport and wait until it reports a connection id.

        Raises:
            ClientNotActiveError: The client is passive.
            ConnectionNotSuccessfulError: The transport ended without a
                connection id; ``underlying`` is the last disconnect error.
            ClientDeallocatedError: The client was closed while waiting.
        """
        client = self._client()
        if not client.config.is_active:
            raise ClientNotActiveError("Connecting requires a client in active mode")

        waiters = self._state.connection_waiters
        with waiters.lock:
            if self._state.connection_id is not None:
                return
            waiter_id, future = waiters.wait()

        logger.debug("Connecting transport")
        try:
            client.transport.connect()
        except Exception:
            waiters.invalidate(waiter_id)
            raise
        del client

        try:
            connection_id = await future
        except asyncio.CancelledError:
            waiters.invalidate(waiter_id)
            raise

        if connection_id is not None:
            return
        if not self._liveness.alive:
            raise ClientDeallocatedError("Client was closed before the connection was established")
        raise ConnectionNotSuccessfulError(underlying=self._state.last_disconnect_error)

    # ------------------------------------------------------------------
    # Identity changes
    # ------------------------------------------------------------------

    async def prepare_environment(self, user_info: UserInfo | None, new_token: Token) -> None:
        """Make local state ready for ``new_token``'s user.

        Installs the token, releases token waiters (with the token for the
        same user, with absence for a new one), wipes the store and rebuilds
        workers when needed and assigns the connect endpoint. Connecting is
        left to the caller.

        Raises:
            InvalidTokenError: ``user_info`` names another user than the token.
            ClientNotActiveError: The client is passive; everything but the
                endpoint assignment has already happened.
            Any error raised by the store wipe, unchanged.
        """
        client = self._client()
        auth = client.auth

        if user_info is None:
            current = self._state.current_user
            same_user = current is not None and current.id == new_token.user_id
            user_info = current if same_user else UserInfo(id=new_token.user_id)
        if user_info.id != new_token.user_id and not new_token.is_anonymous:
            raise InvalidTokenError(f"Token was issued for {new_token.user_id!r}, not {user_info.id!r}")

        old_user_id = auth.current_user_id
        user_changed = old_user_id is not None and old_user_id != new_token.user_id
        decision = needs_reset(old_user_id, new_token.user_id, len(client.worker_factory.workers))

        auth.install_token(new_token, release_waiters_with=None if user_changed else new_token)
        self._state.set_current_user(user_info)
        if user_changed:
            logger.info("Current user changed from %s to %s", old_user_id, new_token.user_id)

        if decision.wipe_store:
            client.worker_factory.remove_all_workers()
            self._state.clear_controllers()
            await client.store.wipe_all()
            client = self._client()
            client.worker_factory.create_workers()
        elif decision.rebuild_workers:
            client.worker_factory.create_workers()

        if not client.config.is_active:
            raise ClientNotActiveError("Client is passive; the environment is prepared but no connection is made")

        endpoint = ConnectEndpoint(client.config.base_url, client.config.api_key, user_info)
        if client.transport.connect_endpoint != endpoint:
            client.transport.connect_endpoint = endpoint
            logger.debug("Connect endpoint set for user %s", user_info.id)

    async def reload_user_if_needed(
        self,
        user_info: UserInfo | None = None,
        token_provider: TokenProvider | None = None,
    ) -> None:
        """Switch to (or refresh) the user behind ``token_provider`` and connect.

        Without a provider the current token is reused, which resumes a
        session restored after relaunch.

        Raises:
            ConnectionWasNotInitiatedError: There is nothing to reload.
            Any error from the token provider, the environment preparation
            or ``connect``.
        """
        if self._reload_lock.locked():
            logger.debug("Reload in flight; queueing behind it")
        async with self._reload_lock:
            await self._reload(user_info, token_provider)

    async def _reload(self, user_info: UserInfo | None, token_provider: TokenProvider | None) -> None:
        auth = self._client().auth

        if token_provider is not None:
            token = await auth.refresh_token(token_provider)
        elif auth.current_token is not None:
            token = auth.current_token
        elif auth.token_provider is not None:
            token = await auth.refresh_token()
        else:
            raise ConnectionWasNotInitiatedError("No user, token or token provider to connect with")

        self._client()
        if auth.current_user_id != token.user_id:
            await self.disconnect(DisconnectionSource.user_initiated())

        await self.prepare_environment(user_info, token)
        await self.connect()

    # ------------------------------------------------------------------
    # Transport status stream
    # ------------------------------------------------------------------

    def handle_connection_status(self, status: ConnectionStatus) -> None:
        """Status listener registered on the transport."""
        server_error = status.source.server_error if status.is_disconnected and status.source else None

        if status.is_connected:
            self._expired_refreshes = 0

        if isinstance(server_error, TokenExpiredError):
            self._state.apply_status(status, release_waiters=False)
            if self._expired_refreshes >= MAX_TOKEN_REFRESH_ATTEMPTS:
                logger.warning("Token still rejected after %d refreshes; giving up", self._expired_refreshes)
                self._expired_refreshes = 0
                self._state.clear_connection_id()
                return
            self._expired_refreshes += 1
            logger.info("Connection rejected with an expired token; refreshing")
            self._spawn(self._refresh_expired_token())
            return

        self._state.apply_status(status)

    async def _refresh_expired_token(self) -> None:
        try:
            client = self._client()
            rejected = client.auth.current_token
            previous_user_id = client.auth.current_user_id
            token = await client.auth.refresh_token()
            client = self._client()
            if token == rejected or token.is_expired:
                raise TokenExpiredError("Token provider returned the rejected or an expired token")
            if token.user_id != previous_user_id:
                raise InvalidTokenError(f"Refreshed token belongs to {token.user_id!r}, not {previous_user_id!r}")
            client.transport.connect()
        except Exception as e:
            logger.warning("Could not recover from expired token: %s", e)
            self._expired_refreshes = 0
            self._state.clear_connection_id()

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.warning("No running event loop; releasing connection id waiters")
            self._state.clear_connection_id()
            return
        task = loop.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def shutdown(self) -> None:
        """Cancel background work started from the status stream."""
        for task in list(self._background):
            task.cancel()
        self._background.clear()
