"""
Tests for the ChatClient facade.

Tests cover:
- connect_user / connect_guest_user / reconnect / disconnect
- logout and close
- Session snapshot and restore
- Waiting for token and connection id
- Default collaborators and configuration
"""

import asyncio
from unittest.mock import MagicMock

import pytest
from conftest import FakeTransport, SpyWorker, make_client, settle, with_user_session

from chatlink.client import ChatClient
from chatlink.collaborators import BuilderWorkerFactory, InMemoryStore, PendingRequestQueue, RecoverySync
from chatlink.config import ChatClientConfig, ClientMode
from chatlink.connection.state import SessionSnapshot
from chatlink.connection.status import ConnectionStatus, ConnectionStatusKind
from chatlink.connection.transport import WebSocketTransport
from chatlink.errors import (
    ClientDeallocatedError,
    ConnectionWasNotInitiatedError,
    MissingConnectionIdError,
    MissingTokenError,
    NotConnectedError,
)
from chatlink.tokens import Token, UserInfo

# =============================================================================
# CONNECTING
# =============================================================================


class TestConnectUser:
    """Tests for connecting users through the facade."""

    @pytest.mark.asyncio
    async def test_requires_token_or_provider(self, clean_client, transport):
        with pytest.raises(MissingTokenError):
            await clean_client.connect_user(UserInfo(id="alice"))

        assert transport.connect_calls == 0

    @pytest.mark.asyncio
    async def test_with_static_token(self, clean_client, transport, alice_token):
        task = asyncio.create_task(clean_client.connect_user(UserInfo(id="alice", name="Alice"), alice_token))
        await settle()

        transport.simulate(ConnectionStatus.connected("conn-1"))
        await task

        assert clean_client.current_user_id == "alice"
        assert clean_client.current_user.name == "Alice"
        assert clean_client.current_token == alice_token
        assert clean_client.connection_id == "conn-1"

    @pytest.mark.asyncio
    async def test_guest_user(self, clean_client, transport):
        task = asyncio.create_task(clean_client.connect_guest_user())
        await settle()
        transport.simulate(ConnectionStatus.connected("conn-guest"))
        await task

        assert clean_client.current_token.is_anonymous
        assert clean_client.current_user_id.startswith("anon-")
        assert transport.connect_endpoint.user_id == clean_client.current_user_id
        assert "auth_type=anonymous" in transport.connect_endpoint.url_with_token(clean_client.current_token)

    @pytest.mark.asyncio
    async def test_guest_user_with_given_id(self, clean_client, transport):
        task = asyncio.create_task(clean_client.connect_guest_user(UserInfo(id="visitor")))
        await settle()
        transport.simulate(ConnectionStatus.connected("conn-guest"))
        await task

        assert clean_client.current_user_id == "visitor"

    @pytest.mark.asyncio
    async def test_disconnect_then_reconnect(self, alice_token):
        transport = FakeTransport(auto_complete_disconnect=True)
        client = with_user_session(make_client(transport=transport), alice_token)

        await client.disconnect()
        assert client.connection_status.is_disconnected
        assert client.connection_id is None

        task = asyncio.create_task(client.reconnect())
        await settle()
        transport.simulate(ConnectionStatus.connected("conn-again"))
        await task

        assert client.connection_id == "conn-again"
        assert client.current_token == alice_token


# =============================================================================
# LOGOUT / CLOSE
# =============================================================================


class TestLogout:
    """Tests for logout."""

    @pytest.mark.asyncio
    async def test_forgets_everything(self, alice_token):
        transport = FakeTransport(auto_complete_disconnect=True)
        client = with_user_session(make_client(transport=transport), alice_token)
        workers = client.background_workers

        await client.logout()

        assert client.current_token is None
        assert client.current_user is None
        assert client.auth.token_provider is None
        assert client.background_workers == []
        assert all(worker.closed for worker in workers)
        assert client.connection_status.is_disconnected
        client.store.wipe_all.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reload_after_logout_has_nothing_to_resume(self, alice_token):
        transport = FakeTransport(auto_complete_disconnect=True)
        client = with_user_session(make_client(transport=transport), alice_token)
        await client.logout()

        with pytest.raises(ConnectionWasNotInitiatedError):
            await client.reload_user_if_needed()


class TestClose:
    """Tests for close."""

    @pytest.mark.asyncio
    async def test_releases_waiters(self, clean_client):
        token_waiter = asyncio.create_task(clean_client.provide_token(timeout=1.0))
        connection_waiter = asyncio.create_task(clean_client.provide_connection_id(timeout=1.0))
        await settle()

        await clean_client.close()

        with pytest.raises(MissingTokenError):
            await token_waiter
        with pytest.raises(MissingConnectionIdError):
            await connection_waiter
        assert clean_client.is_closed

    @pytest.mark.asyncio
    async def test_closes_transport_and_workers(self, alice_token):
        transport = FakeTransport(auto_complete_disconnect=True)
        client = with_user_session(make_client(transport=transport), alice_token)
        workers = client.background_workers

        await client.close()

        assert transport.disconnect_calls == 1
        assert all(worker.closed for worker in workers)
        client.request_queue.flush_pending_requests.assert_called_once()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, clean_client):
        await clean_client.close()
        await clean_client.close()

        clean_client.request_queue.flush_pending_requests.assert_called_once()

    @pytest.mark.asyncio
    async def test_operations_after_close(self, clean_client, alice_token):
        await clean_client.close()

        with pytest.raises(ClientDeallocatedError):
            await clean_client.connect_user(UserInfo(id="alice"), alice_token)
        with pytest.raises(ClientDeallocatedError):
            await clean_client.disconnect()
        with pytest.raises(ClientDeallocatedError):
            clean_client.restore(SessionSnapshot.capture(None, alice_token))

    @pytest.mark.asyncio
    async def test_async_context_manager(self, transport):
        async with make_client(transport=transport) as client:
            assert not client.is_closed

        assert client.is_closed


# =============================================================================
# SNAPSHOT / RESTORE
# =============================================================================


class TestSnapshot:
    """Tests for persisting and resuming sessions."""

    def test_no_snapshot_without_token(self, clean_client):
        assert clean_client.snapshot() is None

    @pytest.mark.asyncio
    async def test_restore_into_new_client(self, active_client, transport):
        saved = active_client.snapshot().to_json()
        new_transport = FakeTransport()
        resumed = make_client(transport=new_transport)
        resumed.restore(SessionSnapshot.from_json(saved))

        assert resumed.current_token == active_client.current_token
        assert resumed.current_user == active_client.current_user
        assert new_transport.connect_calls == 0

        task = asyncio.create_task(resumed.reload_user_if_needed())
        await settle()
        new_transport.simulate(ConnectionStatus.connected("conn-resumed"))
        await task

        assert resumed.connection_id == "conn-resumed"
        resumed.store.wipe_all.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_restore_does_not_release_token_waiters(self, clean_client, alice_token):
        clean_client.auth.token_waiters.register(lambda v: None)

        clean_client.restore(SessionSnapshot.capture(None, alice_token))

        assert clean_client.auth.token_waiter_count == 1


# =============================================================================
# WAITING
# =============================================================================


class TestProvide:
    """Tests for provide_token / provide_connection_id."""

    @pytest.mark.asyncio
    async def test_token_timeout_uses_config(self, clean_client):
        with pytest.raises(MissingTokenError):
            await clean_client.provide_token()

        assert clean_client.auth.token_waiter_count == 0

    @pytest.mark.asyncio
    async def test_connection_id_timeout(self, clean_client):
        with pytest.raises(MissingConnectionIdError):
            await clean_client.provide_connection_id(timeout=0.05)

        assert clean_client.connection_waiter_count == 0

    @pytest.mark.asyncio
    async def test_connection_id_when_connected(self, active_client):
        assert await active_client.provide_connection_id() == "conn-initial"

    @pytest.mark.asyncio
    async def test_complete_connection_id_waiters(self, clean_client):
        task = asyncio.create_task(clean_client.provide_connection_id(timeout=1.0))
        await settle()

        assert clean_client.complete_connection_id_waiters("manual") == 1

        assert await task == "manual"

    @pytest.mark.asyncio
    async def test_complete_token_waiters(self, clean_client, alice_token):
        task = asyncio.create_task(clean_client.provide_token(timeout=1.0))
        await settle()

        clean_client.complete_token_waiters(alice_token)

        assert await task is alice_token


# =============================================================================
# OBSERVERS
# =============================================================================


class TestObservers:
    """Tests for status listeners and controller tracking."""

    def test_status_listener_sees_updated_state(self, clean_client, transport):
        seen = []
        clean_client.add_status_listener(lambda status: seen.append((status.kind, clean_client.connection_id)))

        transport.simulate(ConnectionStatus.connected("conn-7"))

        assert seen == [(ConnectionStatusKind.CONNECTED, "conn-7")]

    def test_track_controller(self, clean_client):
        class Controller:
            pass

        controller = Controller()
        clean_client.track_controller(controller)

        assert clean_client.active_controllers == [controller]


# =============================================================================
# DEFAULTS AND CONFIG
# =============================================================================


class TestDefaults:
    """Tests for default collaborators and configuration."""

    def test_default_collaborators(self):
        client = ChatClient(ChatClientConfig(api_key="key"))

        assert isinstance(client.transport, WebSocketTransport)
        assert isinstance(client.request_queue, PendingRequestQueue)
        assert isinstance(client.sync_repository, RecoverySync)
        assert isinstance(client.store, InMemoryStore)
        assert isinstance(client.worker_factory, BuilderWorkerFactory)
        assert client.mode is ClientMode.ACTIVE
        assert client.connection_status.kind is ConnectionStatusKind.INITIALIZED

    @pytest.mark.asyncio
    async def test_disconnect_fails_parked_requests(self):
        client = ChatClient(ChatClientConfig(api_key="key"), transport=FakeTransport())
        parked = client.request_queue.park()

        await client.disconnect()

        with pytest.raises(NotConnectedError):
            await parked

    @pytest.mark.asyncio
    async def test_disconnect_cancels_recovery(self):
        client = ChatClient(ChatClientConfig(api_key="key"), transport=FakeTransport())
        recovery = client.sync_repository.start_recovery(asyncio.sleep(10))

        await client.disconnect()
        await settle()

        assert recovery.cancelled()
        assert client.sync_repository.cancellations == 1

    @pytest.mark.asyncio
    async def test_in_memory_store_wiped_on_user_change(self, alice_token, bob_token):
        transport = FakeTransport(auto_complete_disconnect=True)
        client = ChatClient(
            ChatClientConfig(api_key="key"),
            transport=transport,
            worker_builders=[SpyWorker],
        )
        with_user_session(client, alice_token)
        client.store.data["channel"] = {"id": "general"}

        task = asyncio.create_task(client.connect_user(UserInfo(id="bob"), bob_token))
        await settle()
        transport.simulate(ConnectionStatus.connected("conn-bob"))
        await task

        assert client.store.data == {}
        assert client.store.wipe_count == 1

    @pytest.mark.asyncio
    async def test_custom_worker_factory(self, clean_client, transport):
        factory = MagicMock()
        factory.workers = []
        client = ChatClient(
            ChatClientConfig(api_key="key"),
            transport=transport,
            request_queue=MagicMock(),
            sync_repository=MagicMock(),
            store=clean_client.store,
            worker_factory=factory,
        )

        await client.prepare_environment(None, Token.development("alice"))

        factory.remove_all_workers.assert_called_once()
        factory.create_workers.assert_called_once()

    def test_config_roundtrip(self):
        config = ChatClientConfig(api_key="key", mode=ClientMode.PASSIVE, token_timeout=None)

        assert ChatClientConfig.from_dict(config.to_dict()) == config

    def test_config_defaults(self):
        config = ChatClientConfig.from_dict({"api_key": "key"})

        assert config.is_active
        assert config.token_timeout == 10.0

