from contextlib import asynccontextmanager
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from routers.rooms import rooms_router
from routers.messages import messages_router
from auth import TokenAuthenticator
from backend import StoreBackend, build_store, run_expiry_sweep
from constants import CORS_ORIGINS, LOG_FILE, LOG_LEVEL, SWEEP_INTERVAL_SECONDS, TOKEN_COOKIE_NAME
from errors import ChatError
from message_store import MessageStore
from notifier import EVENT_ROOM_DESTROYED, EventNotifier, build_notifier, now_ms
from room_manager import RoomManager
import asyncio
import json
from typing import Dict
from logging_config import get_logger, setup_logging

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


class ConnectionHub:
    """WebSocket connections of this instance, grouped by room.

    One pub/sub listener task runs per room with local connections and
    forwards every event to them. Other instances run their own listeners.
    """

    # Pause after a failed read so a dead connection does not spin the loop
    error_backoff = 1.0

    def __init__(self, notifier: EventNotifier):
        self.notifier = notifier
        # Format: {room_id: {connection_id: websocket}}
        self.room_connections: Dict[str, Dict[int, WebSocket]] = {}
        # Format: {room_id: task}
        self.room_tasks: Dict[str, asyncio.Task] = {}

    async def connect(self, room_id: str, websocket: WebSocket):
        self.room_connections.setdefault(room_id, {})[id(websocket)] = websocket
        if room_id not in self.room_tasks or self.room_tasks[room_id].done():
            # Subscribe before returning so no event published after connect() is missed
            subscription = self.notifier.subscribe(room_id)
            self.room_tasks[room_id] = asyncio.create_task(self.listen(room_id, subscription))
            logger.debug(f"Started pub/sub listener for room: {room_id}")

    async def disconnect(self, room_id: str, websocket: WebSocket):
        connections = self.room_connections.get(room_id)
        if connections is not None:
            connections.pop(id(websocket), None)
            if not connections:
                del self.room_connections[room_id]
                await self.stop_listener(room_id)

    async def stop_listener(self, room_id: str):
        task = self.room_tasks.pop(room_id, None)
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            logger.debug(f"Cancelled pub/sub listener for room {room_id}")

    async def close(self):
        for room_id in list(self.room_tasks):
            await self.stop_listener(room_id)

    async def broadcast(self, room_id: str, event: dict):
        connections = list(self.room_connections.get(room_id, {}).values())
        if not connections:
            return
        payload = json.dumps(event)
        results = await asyncio.gather(*(ws.send_text(payload) for ws in connections), return_exceptions=True)
        failed = sum(1 for r in results if isinstance(r, Exception))
        logger.debug(f"Broadcast {event.get('event')} to {len(connections) - failed}/{len(connections)} connections in room {room_id}")

        if event.get("event") == EVENT_ROOM_DESTROYED:
            for ws in connections:
                try:
                    await ws.close(code=1000, reason="Room destroyed")
                except Exception as e:
                    logger.debug(f"Error closing WebSocket: {e}")

    async def listen(self, room_id: str, subscription):
        """Background task: read the room channel and broadcast to local connections."""
        logger.info(f"Starting pub/sub listener for room: {room_id}")
        loop = asyncio.get_running_loop()
        try:
            while room_id in self.room_connections:
                try:
                    # get_message blocks for up to a second, keep it off the event loop
                    event = await loop.run_in_executor(None, subscription.get_message, 1.0)
                    if event is None:
                        continue
                    await self.broadcast(room_id, event)
                except Exception as e:
                    # One bad read must not end the room's listener
                    logger.error(f"Error in pub/sub listener for room {room_id}: {e}", exc_info=True)
                    await asyncio.sleep(self.error_backoff)
        except asyncio.CancelledError:
            logger.info(f"Pub/sub listener cancelled for room: {room_id}")
        finally:
            try:
                subscription.close()
            except Exception as e:
                logger.error(f"Error closing pub/sub for room {room_id}: {e}")


def create_app(store: StoreBackend = None, notifier: EventNotifier = None, **manager_options) -> FastAPI:
    store = store or build_store()
    notifier = notifier or build_notifier(store)
    authenticator = TokenAuthenticator(store)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            store.ping()
            logger.info(f"{type(store).__name__} is reachable")
        except Exception as e:
            logger.error(f"Store ping failed: {e}", exc_info=True)
            raise
        sweep_task = None
        if not store.native_ttl:
            sweep_task = asyncio.create_task(run_expiry_sweep(store, SWEEP_INTERVAL_SECONDS))
        try:
            yield
        finally:
            await app.state.hub.close()
            if sweep_task is not None:
                sweep_task.cancel()
                try:
                    await sweep_task
                except asyncio.CancelledError:
                    pass

    app = FastAPI(lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.store = store
    app.state.notifier = notifier
    app.state.authenticator = authenticator
    app.state.room_manager = RoomManager(store, notifier, authenticator, **manager_options)
    app.state.message_store = MessageStore(store, notifier, authenticator)
    app.state.hub = ConnectionHub(notifier)

    @app.exception_handler(ChatError)
    async def chat_error_handler(request, exc: ChatError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.code, "detail": exc.message})

    app.include_router(rooms_router, prefix="/api")
    app.include_router(messages_router, prefix="/api")

    @app.get("/health")
    async def health():
        return {"status": "ok", "store": type(store).__name__}

    @app.websocket("/api/realtime/{room_id}/ws")
    async def realtime_endpoint(room_id: str, websocket: WebSocket):
        """Pushes room events to a member. Membership comes from the auth cookie."""
        token = websocket.cookies.get(TOKEN_COOKIE_NAME)
        if not authenticator.is_member(room_id, token):
            logger.info(f"WebSocket connection rejected for room {room_id}: not a member")
            await websocket.close(code=1008, reason="Unauthorized")
            return

        await websocket.accept()
        hub: ConnectionHub = app.state.hub
        await hub.connect(room_id, websocket)
        logger.info(f"WebSocket connection accepted for room: {room_id}")
        await websocket.send_text(json.dumps({
            "event": "connected",
            "room_id": room_id,
            "data": {},
            "timestamp": now_ms(),
        }))
        try:
            # Clients only listen, anything they send is ignored
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.info(f"WebSocket disconnected for room {room_id}")
        except RuntimeError as e:
            # receive after the server closed the socket, e.g. on room.destroyed
            logger.debug(f"WebSocket for room {room_id} closed by server: {e}")
        finally:
            await hub.disconnect(room_id, websocket)

    logger.info("FastAPI application initialized")
    return app


app = create_app()
