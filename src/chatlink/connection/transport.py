"""
Transport protocol and the aiohttp websocket transport.

The coordinator only relies on ``Transport``: a fire-and-forget
``connect()``, an awaitable best-effort ``disconnect(source)``, a settable
``connect_endpoint`` and status listeners. ``WebSocketTransport`` is the
default implementation.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

import aiohttp

from ..errors import ConnectionNotSuccessfulError, TokenExpiredError
from ..tokens import Token
from .endpoint import ConnectEndpoint
from .status import ConnectionStatus, DisconnectionSource

logger = logging.getLogger(__name__)

StatusListener = Callable[[ConnectionStatus], None]
EventListener = Callable[[dict[str, Any]], None]

#: Server error code for an expired token.
TOKEN_EXPIRED_CODE = 40


@runtime_checkable
class Transport(Protocol):
    connect_endpoint: ConnectEndpoint | None

    def connect(self) -> None: ...

    async def disconnect(self, source: DisconnectionSource) -> None: ...

    def add_status_listener(self, listener: StatusListener) -> None: ...


def error_from_payload(payload: dict[str, Any]) -> Exception:
    """Map a ``connection.error`` frame to a client error."""
    error = payload.get("error") or {}
    code = error.get("code")
    message = error.get("message") or "Connection rejected by server"
    if code == TOKEN_EXPIRED_CODE:
        return TokenExpiredError(message)
    return ConnectionNotSuccessfulError(f"{message} (code {code})")


class WebSocketTransport:
    """Websocket transport on ``aiohttp``.

    The server's first frame is a ``health.check`` carrying the
    ``connection_id``; until it arrives the status stays ``connecting``.
    Later ``health.check`` frames are keep-alives; every other JSON frame is
    handed to the event listeners.
    """

    def __init__(
        self,
        *,
        token_supplier: Callable[[], Token | None] | None = None,
        heartbeat: float = 25.0,
        session_factory: Callable[[], aiohttp.ClientSession] = aiohttp.ClientSession,
    ) -> None:
        self.connect_endpoint: ConnectEndpoint | None = None
        self._token_supplier = token_supplier
        self._heartbeat = heartbeat
        self._session_factory = session_factory
        self._status = ConnectionStatus.initialized()
        self._status_listeners: list[StatusListener] = []
        self._event_listeners: list[EventListener] = []
        self._task: asyncio.Task | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._closing = False
        self._stats = {"connect_attempts": 0, "events_received": 0}

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def stats(self) -> dict[str, int]:
        return dict(self._stats)

    def add_status_listener(self, listener: StatusListener) -> None:
        self._status_listeners.append(listener)

    def add_event_listener(self, listener: EventListener) -> None:
        self._event_listeners.append(listener)

    def _publish(self, status: ConnectionStatus) -> None:
        self._status = status
        for listener in list(self._status_listeners):
            try:
                listener(status)
            except Exception:
                logger.exception("Status listener failed for %s", status.kind.value)

    def connect(self) -> None:
        if self._task is not None and not self._task.done():
            logger.debug("Connect requested while a connection is already running")
            return
        if self.connect_endpoint is None:
            logger.warning("Connect requested without a connect endpoint")
            self._publish(ConnectionStatus.disconnected(DisconnectionSource.system_initiated()))
            return

        token = self._token_supplier() if self._token_supplier is not None else None
        url = self.connect_endpoint.url_with_token(token)
        self._closing = False
        self._stats["connect_attempts"] += 1
        self._publish(ConnectionStatus.connecting())
        self._task = asyncio.get_running_loop().create_task(self._run(url))

    async def disconnect(self, source: DisconnectionSource) -> None:
        task = self._task
        if task is None or task.done():
            self._task = None
            if not self._status.is_disconnected:
                self._publish(ConnectionStatus.disconnected(source))
            return

        self._closing = True
        self._publish(ConnectionStatus.disconnecting())
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        self._task = None
        self._publish(ConnectionStatus.disconnected(source))

    async def _run(self, url: str) -> None:
        error: BaseException | None = None
        session = self._session_factory()
        try:
            async with session.ws_connect(url, heartbeat=self._heartbeat) as ws:
                self._ws = ws
                error = await self._read_frames(ws)
        except (aiohttp.ClientError, TimeoutError) as e:
            logger.warning("Websocket connection failed: %s", e)
            error = ConnectionNotSuccessfulError(str(e), underlying=e)
        finally:
            self._ws = None
            await session.close()

        if not self._closing:
            self._publish(ConnectionStatus.disconnected(DisconnectionSource.server_initiated(error)))

    async def _read_frames(self, ws: aiohttp.ClientWebSocketResponse) -> BaseException | None:
        connected = False
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.ERROR:
                return ws.exception()
            if msg.type != aiohttp.WSMsgType.TEXT:
                continue

            try:
                payload = json.loads(msg.data)
            except ValueError:
                logger.warning("Dropping non-JSON frame")
                continue
            if not isinstance(payload, dict):
                continue

            event_type = payload.get("type")
            if event_type == "connection.error":
                return error_from_payload(payload)

            if not connected:
                connection_id = payload.get("connection_id")
                if not connection_id:
                    return ConnectionNotSuccessfulError("First frame carried no connection_id")
                connected = True
                logger.info("Websocket connected with connection id %s", connection_id)
                self._publish(ConnectionStatus.connected(connection_id))
                continue

            if event_type == "health.check":
                continue

            self._stats["events_received"] += 1
            for listener in list(self._event_listeners):
                try:
                    listener(payload)
                except Exception:
                    logger.exception("Event listener failed for %s", event_type)
        return None
