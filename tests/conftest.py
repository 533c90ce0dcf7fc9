"""Shared fakes and fixtures for the connection lifecycle tests."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from chatlink.client import ChatClient
from chatlink.config import ChatClientConfig, ClientMode
from chatlink.connection.endpoint import ConnectEndpoint
from chatlink.connection.state import SessionSnapshot
from chatlink.connection.status import ConnectionStatus, DisconnectionSource
from chatlink.tokens import Token, UserInfo

# =============================================================================
# FAKES
# =============================================================================


class FakeTransport:
    """Transport double recording calls and letting tests drive its status.

    ``disconnect`` suspends until ``complete_disconnect()`` unless
    ``auto_complete_disconnect`` is set.
    """

    def __init__(self, auto_complete_disconnect: bool = False) -> None:
        self.connect_endpoint: ConnectEndpoint | None = None
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.disconnect_source: DisconnectionSource | None = None
        self.auto_complete_disconnect = auto_complete_disconnect
        self._listeners: list = []
        self._pending_disconnect: asyncio.Future | None = None

    def add_status_listener(self, listener) -> None:
        self._listeners.append(listener)

    def simulate(self, status: ConnectionStatus) -> None:
        for listener in list(self._listeners):
            listener(status)

    def connect(self) -> None:
        self.connect_calls += 1
        self.simulate(ConnectionStatus.connecting())

    async def disconnect(self, source: DisconnectionSource) -> None:
        self.disconnect_calls += 1
        self.disconnect_source = source
        self.simulate(ConnectionStatus.disconnecting())
        if not self.auto_complete_disconnect:
            self._pending_disconnect = asyncio.get_running_loop().create_future()
            await self._pending_disconnect
        self.simulate(ConnectionStatus.disconnected(source))

    @property
    def disconnect_pending(self) -> bool:
        return self._pending_disconnect is not None and not self._pending_disconnect.done()

    def complete_disconnect(self) -> None:
        assert self.disconnect_pending, "no disconnect in flight"
        self._pending_disconnect.set_result(None)


class SpyWorker:
    """Background worker recording whether it was closed."""

    created = 0

    def __init__(self) -> None:
        SpyWorker.created += 1
        self.closed = False

    def close(self) -> None:
        self.closed = True


class Controller:
    """Stand-in for a UI controller tracked by the client."""


async def settle(rounds: int = 20) -> None:
    """Let scheduled callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_store(error: Exception | None = None) -> MagicMock:
    store = MagicMock()
    store.wipe_all = AsyncMock(side_effect=error)
    return store


def make_client(
    *,
    mode: ClientMode = ClientMode.ACTIVE,
    transport: FakeTransport | None = None,
    store: MagicMock | None = None,
) -> ChatClient:
    return ChatClient(
        ChatClientConfig(api_key="test-key", base_url="wss://chat.test", mode=mode, token_timeout=0.5),
        transport=transport or FakeTransport(),
        request_queue=MagicMock(),
        sync_repository=MagicMock(),
        store=store or make_store(),
        worker_builders=[SpyWorker],
    )


def with_user_session(client: ChatClient, token: Token, connection_id: str = "conn-initial") -> ChatClient:
    """Put ``client`` in the state of a connected user session."""
    user_info = UserInfo(id=token.user_id)
    client.restore(SessionSnapshot.capture(user_info, token))
    client.transport.connect_endpoint = ConnectEndpoint(client.config.base_url, client.config.api_key, user_info)
    client.worker_factory.create_workers()
    client.transport.simulate(ConnectionStatus.connected(connection_id))
    return client


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def alice_token():
    return Token.development("alice")


@pytest.fixture
def bob_token():
    return Token.development("bob")


@pytest.fixture
def active_client(transport, alice_token):
    """Active client connected as alice."""
    return with_user_session(make_client(transport=transport), alice_token)


@pytest.fixture
def passive_client(transport, alice_token):
    """Passive client with alice's session."""
    return with_user_session(make_client(mode=ClientMode.PASSIVE, transport=transport), alice_token)


@pytest.fixture
def clean_client(transport):
    """Active client with no user, no workers and no endpoint."""
    return make_client(transport=transport)
