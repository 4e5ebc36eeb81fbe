"""
Bridge Connection to rosbridge over WebSocket.

Handles:
- Connection state machine (disconnected -> connecting -> connected)
- rosbridge v2 JSON framing
- Message queue for non-blocking publishing
- Service call correlation by request id
- Clean teardown of channels and waiters on close
"""

import asyncio
import enum
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from .channels import ChannelRegistry, ChannelSet
from .errors import InputError, NotConnected, RequestError, TransportError
from .notify import Notifier, log_notifier

logger = logging.getLogger(__name__)

WS_SCHEME = "ws://"

Connector = Callable[[str], Awaitable[Any]]


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass
class ConnectionStats:
    """Statistics about the bridge connection."""
    connect_time: Optional[float] = None
    disconnect_time: Optional[float] = None
    messages_sent: int = 0
    messages_failed: int = 0
    messages_received: int = 0
    last_send_time: Optional[float] = None


class BridgeConnection:
    """
    The single link to the middleware bridge.

    Owns the transport and the ChannelSet. The ChannelSet is bound exactly
    while the state is CONNECTED; every other component only reads it.
    No automatic reconnection: after a failure the operator connects again.
    """

    def __init__(
        self,
        registry: ChannelRegistry,
        notify: Optional[Notifier] = None,
        open_timeout: Optional[float] = None,
        connector: Optional[Connector] = None,
        queue_size: int = 100,
    ):
        """
        Initialize bridge connection.

        Args:
            registry: Binds/unbinds channels on state transitions
            notify: Toast callback (message, level)
            open_timeout: Handshake timeout in seconds (None waits forever)
            connector: Coroutine opening a transport for a URL (tests inject a fake)
            queue_size: Maximum queued outbound frames
        """
        self.registry = registry
        self.notify = notify or log_notifier
        self.open_timeout = open_timeout
        self.queue_size = queue_size
        self._connector = connector or self._open_websocket

        self.endpoint: Optional[str] = None
        self._state = ConnectionState.DISCONNECTED
        self._transport: Any = None
        self._channels: Optional[ChannelSet] = None
        self._user_closed = False

        # Tasks
        self._handshake: Optional[asyncio.Future] = None
        self._send_task: Optional[asyncio.Task] = None
        self._listen_task: Optional[asyncio.Task] = None
        self._close_tasks: set = set()

        self._send_queue: Optional[asyncio.Queue] = None
        self._pending: Dict[str, asyncio.Future] = {}
        self._id_counter = 0
        self._state_listeners: List[Callable[[ConnectionState], None]] = []

        self.stats = ConnectionStats()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def channels(self) -> Optional[ChannelSet]:
        """Bound channels, or None unless connected."""
        return self._channels

    def add_state_listener(self, callback: Callable[[ConnectionState], None]) -> None:
        self._state_listeners.append(callback)

    def next_id(self, prefix: str) -> str:
        self._id_counter += 1
        return f"{prefix}:{self._id_counter}"

    async def connect(self, endpoint: str) -> ConnectionState:
        """
        Open the bridge link for a host:port endpoint.

        Returns once the handshake reaches a terminal outcome.

        Raises:
            InputError: Endpoint empty, or a connection already exists
            TransportError: Handshake failed
        """
        endpoint = (endpoint or "").strip()
        if not endpoint:
            self.notify("Please enter rosbridge URL", "error")
            raise InputError("Please enter rosbridge URL")
        if self._state is not ConnectionState.DISCONNECTED:
            raise InputError(f"Bridge is already {self._state.value}")

        url = f"{WS_SCHEME}{endpoint}"
        self.endpoint = endpoint
        self._user_closed = False
        self._set_state(ConnectionState.CONNECTING)
        logger.info(f"Connecting to {url}...")

        handshake = asyncio.ensure_future(self._connector(url))
        self._handshake = handshake
        try:
            transport = await handshake
        except asyncio.CancelledError:
            if self._handshake is not handshake:
                # Superseded by disconnect(), and possibly a newer connect()
                logger.info("Connect attempt cancelled by disconnect")
                return self._state
            self._teardown()
            raise
        except Exception as e:
            if self._handshake is not handshake:
                logger.info(f"Abandoned connect attempt failed: {e}")
                return self._state
            self._on_error(e)
            raise TransportError(f"Connection error: {e}") from e
        finally:
            current = self._handshake is handshake
            if current:
                self._handshake = None

        if not current or self._state is not ConnectionState.CONNECTING:
            await self._close_transport(transport)
            return self._state

        self._on_connection(transport)
        return self._state

    async def disconnect(self) -> None:
        """Close the link. Idempotent and never raises."""
        self._user_closed = True
        handshake, self._handshake = self._handshake, None
        if handshake is not None and not handshake.done():
            handshake.cancel()

        if self._state is ConnectionState.DISCONNECTED:
            return

        transport = self._transport
        self._teardown()
        if transport is not None:
            await self._close_transport(transport)
        logger.info("Disconnected from rosbridge")

    def send(self, frame: Dict[str, Any]) -> bool:
        """
        Queue a frame for sending.

        Non-blocking. Returns False if the queue is full.
        """
        if self._state is not ConnectionState.CONNECTED or self._send_queue is None:
            raise NotConnected()
        try:
            self._send_queue.put_nowait(json.dumps(frame))
            return True
        except asyncio.QueueFull:
            self.stats.messages_failed += 1
            logger.warning("Send queue full, dropping message")
            return False

    async def drain(self) -> None:
        """Wait until every queued frame has been handed to the transport."""
        queue = self._send_queue
        if queue is not None:
            await queue.join()

    async def call_service(
        self,
        service: str,
        service_type: str,
        args: Dict[str, Any],
    ) -> Dict[str, Any]:
        """
        Call a service and wait for its response.

        Raises:
            NotConnected: Not connected
            RequestError: Service reported failure, or the link closed first
        """
        if self._state is not ConnectionState.CONNECTED:
            raise NotConnected()

        call_id = self.next_id(f"call_service:{service}")
        future = asyncio.get_running_loop().create_future()
        self._pending[call_id] = future
        try:
            queued = self.send({
                "op": "call_service",
                "id": call_id,
                "service": service,
                "type": service_type,
                "args": args,
            })
            if not queued:
                raise RequestError(f"Could not queue call to {service}")
            return await future
        finally:
            self._pending.pop(call_id, None)

    def _on_connection(self, transport: Any) -> None:
        """Handshake succeeded: become CONNECTED and bind channels in one step."""
        self._transport = transport
        self._send_queue = asyncio.Queue(maxsize=self.queue_size)
        self._state = ConnectionState.CONNECTED
        self._channels = self.registry.bind(self)

        self.stats.connect_time = time.time()
        self._send_task = asyncio.create_task(self._send_loop(transport, self._send_queue))
        self._listen_task = asyncio.create_task(self._listen(transport))

        logger.info("Connected to rosbridge")
        self._emit_state()
        self.notify("Connected to rosbridge", "success")

    def _on_error(self, error: BaseException) -> None:
        logger.error(f"ROS Error: {error}")
        self.notify("Connection error", "error")
        self._on_close(quiet=True)

    def _on_close(self, quiet: bool = False) -> None:
        if self._state is ConnectionState.DISCONNECTED:
            return
        was_connected = self._state is ConnectionState.CONNECTED
        transport = self._transport
        self._teardown()
        if transport is not None:
            task = asyncio.ensure_future(self._close_transport(transport))
            self._close_tasks.add(task)
            task.add_done_callback(self._close_tasks.discard)
        if was_connected and not quiet and not self._user_closed:
            logger.warning("Connection closed by bridge")
            self.notify("Connection closed", "error")

    def _teardown(self) -> None:
        """Force DISCONNECTED: release channels, fail waiters, stop tasks."""
        if self._channels is not None:
            self.registry.unbind()
            self._channels = None

        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(RequestError("connection closed before response"))

        queue, self._send_queue = self._send_queue, None
        if queue is not None:
            while not queue.empty():
                queue.get_nowait()
                queue.task_done()

        current = asyncio.current_task()
        for task in (self._send_task, self._listen_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._send_task = None
        self._listen_task = None

        self._transport = None
        if self.stats.connect_time is not None:
            self.stats.disconnect_time = time.time()
        self._set_state(ConnectionState.DISCONNECTED)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        self._state = state
        self._emit_state()

    def _emit_state(self) -> None:
        for callback in list(self._state_listeners):
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Error in state listener: {e}")

    async def _send_loop(self, transport: Any, queue: asyncio.Queue) -> None:
        """Process outgoing frame queue."""
        while True:
            raw = await queue.get()
            try:
                await transport.send(raw)
                self.stats.messages_sent += 1
                self.stats.last_send_time = time.time()
            except (ConnectionClosed, WebSocketException) as e:
                self.stats.messages_failed += 1
                logger.warning(f"Send failed: {e}")
            except Exception as e:
                self.stats.messages_failed += 1
                logger.error(f"Send loop error: {e}")
            finally:
                queue.task_done()

    async def _listen(self, transport: Any) -> None:
        """Read frames until the transport closes."""
        try:
            async for raw in transport:
                self.stats.messages_received += 1
                self._handle_frame(raw)
        except asyncio.CancelledError:
            raise
        except ConnectionClosed as e:
            logger.warning(f"Bridge websocket closed: {e}")
        except Exception as e:
            self._on_error(e)
            return
        self._on_close()

    def _handle_frame(self, raw: Any) -> None:
        try:
            frame = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Invalid JSON from bridge: {raw!r}")
            return
        if not isinstance(frame, dict):
            logger.warning(f"Unexpected frame from bridge: {frame!r}")
            return

        op = frame.get("op")
        if op == "publish":
            self.registry.dispatch(frame.get("topic"), frame.get("msg") or {})
        elif op == "service_response":
            self._resolve(frame)
        elif op == "status":
            logger.info(f"Bridge status [{frame.get('level')}]: {frame.get('msg')}")
        else:
            logger.debug(f"Ignoring '{op}' frame")

    def _resolve(self, frame: Dict[str, Any]) -> None:
        call_id = frame.get("id")
        future = self._pending.get(call_id)
        if future is None or future.done():
            # Late or unknown response
            logger.debug(f"Ignoring response for unknown call {call_id}")
            return

        values = frame.get("values")
        if frame.get("result", True) is False:
            future.set_exception(RequestError(f"{frame.get('service')} failed: {values}"))
        else:
            future.set_result(values if values is not None else {})

    async def _open_websocket(self, url: str) -> Any:
        return await websockets.connect(
            url,
            open_timeout=self.open_timeout,
            ping_interval=20,
            ping_timeout=10,
            close_timeout=5,
        )

    async def _close_transport(self, transport: Any) -> None:
        try:
            await transport.close()
        except Exception as e:
            logger.warning(f"Error closing websocket connection: {e}")

    def get_stats(self) -> dict:
        """Get connection statistics."""
        return {
            "state": self._state.value,
            "endpoint": self.endpoint,
            "connect_time": self.stats.connect_time,
            "disconnect_time": self.stats.disconnect_time,
            "messages_sent": self.stats.messages_sent,
            "messages_failed": self.stats.messages_failed,
            "messages_received": self.stats.messages_received,
            "pending_calls": len(self._pending),
            "queue_size": self._send_queue.qsize() if self._send_queue else 0,
        }
