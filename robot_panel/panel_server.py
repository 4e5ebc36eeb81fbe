"""
HTTP/WebSocket surface of the control panel.

Handles:
- FastAPI routes for unlock, connect/disconnect, movement and scripts
- Session cookie scoped to the browser session
- PIN gate on every panel route
- Pushing toasts, console lines and state changes at /events
"""

import asyncio
import logging
import secrets
from collections import OrderedDict
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Tuple

from fastapi import Depends, FastAPI, Request, Response, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .bridge import BridgeConnection, Connector
from .channels import ChannelNames, ChannelRegistry
from .config import PanelConfig
from .dispatcher import CommandDispatcher
from .errors import (
    AccessDenied,
    InputError,
    NotConnected,
    OperationInProgress,
    PanelError,
    RequestError,
    TransportError,
)
from .result_log import ResultLogger
from .session_gate import SessionGate
from .templates import SCRIPT_TEMPLATES, get_template

logger = logging.getLogger(__name__)

SESSION_COOKIE = "panel_session"

ERROR_STATUS = (
    (InputError, status.HTTP_400_BAD_REQUEST),
    (AccessDenied, status.HTTP_401_UNAUTHORIZED),
    (NotConnected, status.HTTP_409_CONFLICT),
    (OperationInProgress, status.HTTP_409_CONFLICT),
    (TransportError, status.HTTP_502_BAD_GATEWAY),
    (RequestError, status.HTTP_502_BAD_GATEWAY),
)


class UnlockRequest(BaseModel):
    pin: str = ""


class ConnectRequest(BaseModel):
    endpoint: str = ""


class MoveRequest(BaseModel):
    joints: List[Any] = Field(default_factory=lambda: [0.0] * 6)
    stroke: Any = 0


class ScriptRequest(BaseModel):
    text: str = ""


class SessionStore:
    """
    Per-browser session storage, keyed by the session cookie.

    Holds at most max_sessions entries; the least recently used session is
    evicted first.
    """

    def __init__(self, max_sessions: int = 1000):
        self.max_sessions = max_sessions
        self._sessions: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_id: Optional[str]) -> Optional[Dict[str, Any]]:
        if not session_id:
            return None
        session = self._sessions.get(session_id)
        if session is not None:
            self._sessions.move_to_end(session_id)
        return session

    def add(self, session: Dict[str, Any]) -> str:
        """Store a session under a fresh id and return the id."""
        session_id = secrets.token_urlsafe(24)
        self._sessions[session_id] = session
        while len(self._sessions) > self.max_sessions:
            evicted, _ = self._sessions.popitem(last=False)
            logger.info(f"Evicted session {evicted[:6]}...")
        return session_id


class EventHub:
    """Fans out UI events to connected /events clients."""

    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._clients: Dict[int, asyncio.Queue] = {}
        self._client_counter = 0
        self.dropped = 0

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def register(self) -> Tuple[int, asyncio.Queue]:
        self._client_counter += 1
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._clients[self._client_counter] = queue
        return self._client_counter, queue

    def unregister(self, client_id: int) -> None:
        self._clients.pop(client_id, None)

    def publish(self, event: Dict[str, Any]) -> None:
        for queue in self._clients.values():
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                self.dropped += 1
                logger.warning("Event queue full, dropping event")

    def notify(self, message: str, level: str = "info") -> None:
        """Toast for the operator."""
        logger.info(f"Toast [{level}]: {message}")
        self.publish({"type": "toast", "level": level, "message": message})


class PanelServer:
    """
    Control panel application.

    Wires the Session Gate, Bridge Connection, Channel Registry, Command
    Dispatcher and Result Logger together behind a FastAPI app. The bridge
    connection is shared by every browser session.
    """

    def __init__(self, config: PanelConfig, connector: Optional[Connector] = None):
        """
        Initialize panel server.

        Args:
            config: Panel configuration
            connector: Transport factory override (tests inject a fake)
        """
        self.config = config
        self.sessions = SessionStore(max_sessions=config.max_sessions)
        self.events = EventHub()
        self.result_log = ResultLogger(max_entries=config.log_max_entries)

        self.registry = ChannelRegistry(
            names=ChannelNames.for_namespace(config.robot_namespace),
            on_script_result=self.result_log.on_result,
        )
        self.bridge = BridgeConnection(
            self.registry,
            notify=self.events.notify,
            open_timeout=config.open_timeout,
            connector=connector,
        )
        self.gate = SessionGate(
            config.pin,
            config.session_key,
            notify=self.events.notify,
            error_clear_delay=config.pin_error_delay,
        )
        self.dispatcher = CommandDispatcher(
            self.bridge,
            self.result_log,
            notify=self.events.notify,
            velocity=config.move_velocity,
            acceleration=config.move_acceleration,
            script_cooldown=config.script_cooldown,
        )

        self.result_log.add_listener(
            lambda entry: self.events.publish({"type": "log", "entry": entry.to_dict()})
        )
        self.bridge.add_state_listener(lambda state: self.events.publish(self._state_event()))

        self.app = FastAPI(title="Robot Control Panel", lifespan=self._lifespan)
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
        self.app.add_exception_handler(PanelError, self._panel_error_handler)
        self._setup_routes()

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        yield
        await self.bridge.disconnect()

    async def _panel_error_handler(self, request: Request, exc: PanelError) -> JSONResponse:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        for error_cls, code in ERROR_STATUS:
            if isinstance(exc, error_cls):
                status_code = code
                break
        logger.info(f"{request.url.path} -> {exc.kind}: {exc.message}")
        return JSONResponse(
            status_code=status_code,
            content={"error": exc.kind, "detail": exc.message},
        )

    def _state_event(self) -> Dict[str, Any]:
        return {"type": "state", **self.status()}

    def status(self) -> Dict[str, Any]:
        return {
            "connection": self.bridge.state.value,
            "endpoint": self.bridge.endpoint,
            **self.dispatcher.status(),
        }

    def _session_for(self, session_id: Optional[str]) -> Optional[Dict[str, Any]]:
        session = self.sessions.get(session_id)
        if session is None or not self.gate.is_authenticated(session):
            return None
        return session

    async def require_session(self, request: Request) -> Dict[str, Any]:
        """Dependency: an authenticated browser session."""
        session = self._session_for(request.cookies.get(SESSION_COOKIE))
        if session is None:
            raise AccessDenied()
        return session

    def _setup_routes(self):
        """Set up FastAPI routes."""
        app = self.app
        authenticated = [Depends(self.require_session)]

        @app.get("/health")
        async def health_check():
            """Health check endpoint."""
            return {
                "status": "ok",
                **self.status(),
                "bridge": self.bridge.get_stats(),
                "event_clients": self.events.client_count,
            }

        @app.get("/api/session")
        async def get_session(request: Request):
            session = self.sessions.get(request.cookies.get(SESSION_COOKIE)) or {}
            return {
                "authenticated": self.gate.is_authenticated(session),
                "lock_error": self.gate.lock_error(session),
            }

        @app.post("/api/unlock")
        async def unlock(body: UnlockRequest, request: Request, response: Response):
            session = self.sessions.get(request.cookies.get(SESSION_COOKIE))
            if session is not None and self.gate.is_authenticated(session):
                return {"granted": True, "lock_error": None}

            # Sessions are stored only once the PIN matches
            candidate = session if session is not None else {}
            granted = self.gate.check_passcode(body.pin, candidate)
            if granted and session is None:
                session_id = self.sessions.add(candidate)
                # No max-age: the cookie lives as long as the browser session
                response.set_cookie(SESSION_COOKIE, session_id, httponly=True, samesite="strict")
            return {"granted": granted, "lock_error": self.gate.lock_error(candidate)}

        @app.get("/api/status", dependencies=authenticated)
        async def get_status():
            return self.status()

        @app.post("/api/connect", dependencies=authenticated)
        async def connect(body: ConnectRequest):
            await self.bridge.connect(body.endpoint)
            return self.status()

        @app.post("/api/disconnect", dependencies=authenticated)
        async def disconnect():
            await self.bridge.disconnect()
            return self.status()

        @app.post("/api/move", dependencies=authenticated)
        async def move(body: MoveRequest):
            result = await self.dispatcher.execute_movement(body.joints, body.stroke)
            return {"executed": True, "result": result}

        @app.post("/api/script", dependencies=authenticated)
        async def run_script(body: ScriptRequest):
            self.dispatcher.run_script(body.text)
            return {"submitted": True}

        @app.get("/api/log", dependencies=authenticated)
        async def get_log():
            return {"entries": [entry.to_dict() for entry in self.result_log.entries()]}

        @app.delete("/api/log", dependencies=authenticated)
        async def clear_log():
            entry = self.result_log.clear()
            return {"entries": [entry.to_dict()]}

        @app.get("/api/templates", dependencies=authenticated)
        async def list_templates():
            return {"templates": sorted(SCRIPT_TEMPLATES)}

        @app.get("/api/templates/{name}", dependencies=authenticated)
        async def read_template(name: str):
            text = get_template(name)
            if text is None:
                return JSONResponse(
                    status_code=status.HTTP_404_NOT_FOUND,
                    content={"error": "not_found", "detail": f"Unknown template: {name}"},
                )
            return {"name": name, "text": text}

        @app.websocket("/events")
        async def websocket_events(websocket: WebSocket):
            """WebSocket endpoint for UI events."""
            await self._handle_events(websocket)

    async def _handle_events(self, websocket: WebSocket) -> None:
        if self._session_for(websocket.cookies.get(SESSION_COOKIE)) is None:
            logger.warning(f"Unauthenticated event client from {websocket.client}")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        await websocket.accept()
        client_id, queue = self.events.register()
        logger.info(f"Event client connected: {client_id}")

        watcher = asyncio.ensure_future(self._watch_client(websocket))
        getter: Optional[asyncio.Future] = None
        try:
            await websocket.send_json(self._state_event())
            while True:
                getter = asyncio.ensure_future(queue.get())
                done, _ = await asyncio.wait({getter, watcher}, return_when=asyncio.FIRST_COMPLETED)
                if watcher in done:
                    if watcher.exception() is not None:
                        raise watcher.exception()
                    logger.info(f"Event client disconnected: {client_id}")
                    break
                await websocket.send_json(getter.result())
        except WebSocketDisconnect:
            logger.info(f"Event client disconnected: {client_id}")
        except Exception as e:
            logger.error(f"Error handling event client {client_id}: {e}")
        finally:
            for task in (getter, watcher):
                if task is not None and not task.done():
                    task.cancel()
            self.events.unregister(client_id)

    async def _watch_client(self, websocket: WebSocket) -> None:
        """Return once the event client goes away. Anything it sends is ignored."""
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                return


def create_app(config: Optional[PanelConfig] = None, connector: Optional[Connector] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        config: Panel configuration (defaults to the environment)
        connector: Transport factory override

    Returns:
        Configured FastAPI application
    """
    server = PanelServer(config or PanelConfig.from_env(), connector=connector)
    return server.app
