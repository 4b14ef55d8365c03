import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from backend import relay_backend
from connection import ConnectionState
from constants import CLOSE_INTERNAL_ERROR, LOG_FILE, LOG_LEVEL
from logging_config import get_logger, setup_logging
from routers.health import health_router
from routers.rooms import rooms_router
from schemas.messages import ErrorCode

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    loop = asyncio.get_running_loop()
    loop.set_exception_handler(lambda _loop, context: relay_backend.report_fault(context))
    relay_backend.start()
    logger.info("Relay started")
    try:
        yield
    finally:
        await relay_backend.shutdown()
        loop.set_exception_handler(None)


app = FastAPI(title="Room Relay", lifespan=lifespan)

# Configure CORS to allow all origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router)
app.include_router(rooms_router)

logger.info("FastAPI application initialized")


@app.get("/", response_class=PlainTextResponse)
async def index():
    return "Room Relay - connect a WebSocket to /room/{roomId}"


@app.websocket("/room")
@app.websocket("/room/{room_path:path}")
async def websocket_endpoint(websocket: WebSocket):
    """Relay endpoint.

    The room is taken from the path (``/room/{roomId}``) or, failing that,
    from the ``room`` query parameter. Every text or binary frame is relayed
    to the other members of the room.
    """
    lifecycle = relay_backend.lifecycle
    remote_addr = websocket.client.host if websocket.client else None
    connection = None
    cause = ConnectionState.LEFT

    try:
        connection = await lifecycle.on_connect(websocket, websocket.url.path, websocket.url.query, remote_addr)
        if connection is None:
            return

        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.debug(f"WebSocket disconnected for connection {connection.id} "
                             f"(code {message.get('code')})")
                break

            payload = message.get("text")
            if payload is None:
                payload = message.get("bytes")
            if payload is None:
                continue

            try:
                await lifecycle.on_message(connection, payload)
            except Exception as e:
                logger.error(f"Error handling message from connection {connection.id}: {e}", exc_info=True)
                await relay_backend.broadcaster.send_error(connection, ErrorCode.INTERNAL_ERROR, "Internal error")

    except WebSocketDisconnect:
        pass
    except Exception as e:
        cause = ConnectionState.ERRORED
        logger.error(f"WebSocket error for connection {connection.id if connection else None}: {e}",
                     exc_info=True)
        if connection is not None:
            await connection.close(CLOSE_INTERNAL_ERROR, "Internal error")
    finally:
        if connection is not None:
            await lifecycle.on_disconnect(connection, cause)
