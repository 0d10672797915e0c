from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from routers.rooms import rooms_router, room_details
from routers.sessions import sessions_router
from backend import build_backend
from constants import STORE_BACKEND
from errors import NotFound, StorageError, ValidationError
from models import Room
from room_codes import normalize_join_code
from room_store import RoomStore
from logging_config import get_logger, setup_logging
import os

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    store: RoomStore = app.state.room_store
    try:
        await store.backend.ping()
    except StorageError as e:
        logger.error(f"Room store unreachable at startup: {e}")
        raise
    yield
    await store.backend.close()


app = FastAPI(lifespan=lifespan)
app.state.room_store = RoomStore(build_backend(STORE_BACKEND))

# Configure CORS to allow all origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins
    allow_credentials=True,
    allow_methods=["*"],  # Allow all HTTP methods
    allow_headers=["*"],  # Allow all headers
)

app.include_router(rooms_router)
app.include_router(sessions_router)

logger.info("FastAPI application initialized")


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    logger.warning(f"Rejected {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    logger.warning(f"{request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=503, content={"detail": "Room store unavailable, please retry"})


def snapshot_message(room_code: str, room: Optional[Room]) -> dict:
    if room is None:
        return {"type": "room_absent", "room_code": room_code}
    return {"type": "room", "room_code": room_code, "room": room_details(room).model_dump(mode="json")}


@app.websocket("/rooms/{room_code}/ws")
async def websocket_endpoint(room_code: str, websocket: WebSocket):
    """Stream full room snapshots to one client.

    The first message is the current state; a room_absent message follows
    deletion. Text "ping" is answered with "pong"; binary frames are ignored.
    If the room stream breaks the socket is closed with 1011.
    """
    store: RoomStore = websocket.app.state.room_store
    logger.info(f"WebSocket connection attempt for room: {room_code}")

    try:
        room_code = normalize_join_code(room_code)
        exists = await store.room_exists(room_code)
    except ValidationError:
        logger.info(f"WebSocket connection rejected: invalid room code {room_code!r}")
        await websocket.close(code=1008, reason="Invalid room code")
        return
    except StorageError as e:
        logger.error(f"WebSocket connection for room {room_code} failed: {e}")
        await websocket.close(code=1011, reason="Room store unavailable")
        return
    if not exists:
        logger.info(f"WebSocket connection rejected: Room {room_code} not found")
        await websocket.close(code=1008, reason="Room not found")
        return

    await websocket.accept()
    logger.info(f"WebSocket connection accepted for room: {room_code}")

    async def push(room: Optional[Room]):
        await websocket.send_json(snapshot_message(room_code, room))

    async def stream_failed(error: StorageError):
        logger.error(f"Closing WebSocket for room {room_code}: {error}")
        await websocket.close(code=1011, reason="Room stream unavailable")

    subscription = store.subscribe(room_code, push, on_error=stream_failed)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info(f"WebSocket disconnected for room {room_code}")
                break
            if message.get("text") == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for room {room_code}")
    finally:
        subscription.cancel()
