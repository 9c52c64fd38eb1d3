import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

from marketchat.core.config import get_settings
from marketchat.core.errors import ChatError
from marketchat.core.logging_config import setup_logging
from marketchat.database.connection import close_mongo_connection, connect_to_mongo, ensure_indexes, get_database
from marketchat.routers.messages import router as messages_router
from marketchat.routers.presence import router as presence_router
from marketchat.routers.realtime import router as realtime_router
from marketchat.services.delivery_channel import DeliveryChannel
from marketchat.utils.presence import PresenceRegistry
from marketchat.utils.realtime_bus import create_bus
from marketchat.utils.websocket_manager import ConnectionManager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):

    setup_logging()
    await connect_to_mongo()
    await ensure_indexes(get_database())
    try:
        yield
    finally:
        await app.state.delivery.bus.close()
        await close_mongo_connection()


def create_app(bus=None, lifespan_handler=lifespan) -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan_handler)
    app.state.delivery = DeliveryChannel(
        ConnectionManager(),
        PresenceRegistry(),
        bus=bus if bus is not None else create_bus(settings.REDIS_URL),
        presence_ttl_seconds=settings.PRESENCE_TTL_SECONDS,
    )

    app.include_router(messages_router)
    app.include_router(presence_router)
    app.include_router(realtime_router)

    @app.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(PyMongoError)
    async def store_error_handler(request: Request, exc: PyMongoError):
        logger.error("Store failure on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"detail": "Server Error"})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"detail": "Server Error"})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        detail = "API endpoint not found" if exc.status_code == 404 and exc.detail == "Not Found" else exc.detail
        return JSONResponse(status_code=exc.status_code, content={"detail": detail}, headers=getattr(exc, "headers", None))

    @app.get("/")
    async def root():
        return {"message": "marketchat is running"}

    return app


app = create_app()
