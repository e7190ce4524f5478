import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from supportchat import __version__
from supportchat.config import get_settings
from supportchat.db_init import init_database
from supportchat.errors import ChatError
from supportchat.api import users, conversations, messages, uploads, websocket
from supportchat.services.realtime import RealtimeHub

logger = logging.getLogger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize the database on startup, flush realtime deliveries on shutdown."""
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
    )
    logger.info(f"Starting {settings.APP_NAME} {__version__}")
    init_database()
    logger.info("API docs available at /docs")
    yield
    await app.state.realtime_hub.close()
    logger.info(f"{settings.APP_NAME} stopped")


async def chat_error_handler(request: Request, exc: ChatError):
    """Render service errors as ``{"detail", "error"}``."""
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Log and handle validation errors with detailed information."""
    body_bytes = await request.body()
    try:
        body_text = body_bytes.decode("utf-8")
    except UnicodeDecodeError:
        body_text = str(body_bytes)

    errors = exc.errors()
    logger.error(f"Validation error on {request.method} {request.url.path}")
    logger.error(f"Request body: {body_text}")
    logger.error(f"Validation errors: {errors}")

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": jsonable_encoder(errors),
            "error": "VALIDATION_ERROR",
            "body": jsonable_encoder(getattr(exc, "body", body_text))
        }
    )


def create_app() -> FastAPI:
    """Build the application with a fresh realtime hub."""
    app = FastAPI(
        title=settings.APP_NAME,
        description="Multi-tenant support chat with real-time messaging",
        version=__version__,
        lifespan=lifespan
    )
    app.state.realtime_hub = RealtimeHub()

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ChatError, chat_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    # Include routers
    app.include_router(users.router, prefix="/api")
    app.include_router(conversations.router, prefix="/api")
    app.include_router(messages.router, prefix="/api")
    app.include_router(uploads.router, prefix="/api")
    app.include_router(websocket.router)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "message": f"{settings.APP_NAME} API",
            "version": __version__,
            "docs": "/docs"
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "supportchat.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
