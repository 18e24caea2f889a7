from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from signing_engine.api.dependencies.signing import get_signing_service
from signing_engine.api.routes import envelopes, events, health, signing
from signing_engine.core.config import get_settings
from signing_engine.core.errors import (
    EnvelopeIntegrityError,
    EnvelopeStateError,
    NotFoundError,
    SigningEngineError,
    SigningNotAllowedError,
)
from signing_engine.core.logging import clear_signing_context, configure_logging, get_logger
from signing_engine.db.session import engine, init_models


configure_logging(get_settings().log_level)
logger = get_logger(__name__)

ERROR_STATUS_CODES: dict[type[SigningEngineError], int] = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    SigningNotAllowedError: status.HTTP_409_CONFLICT,
    EnvelopeStateError: status.HTTP_409_CONFLICT,
    EnvelopeIntegrityError: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:  # noqa: ARG001
    settings = get_settings()
    logger.info("application.startup", environment=settings.environment)
    await init_models()
    yield
    await get_signing_service().task_runner.drain()
    await engine.dispose()
    logger.info("application.shutdown")


async def signing_error_handler(request: Request, exc: SigningEngineError) -> JSONResponse:
    status_code = next(
        (code for error_type, code in ERROR_STATUS_CODES.items() if isinstance(exc, error_type)),
        status.HTTP_400_BAD_REQUEST,
    )
    logger.info(
        "request.rejected",
        path=request.url.path,
        status_code=status_code,
        error_type=type(exc).__name__,
        reason=exc.message,
    )
    return JSONResponse(status_code=status_code, content={"detail": exc.message})


def create_application() -> FastAPI:
    settings = get_settings()
    application = FastAPI(title=settings.app_name, lifespan=lifespan)
    application.include_router(health.router)
    application.include_router(signing.router)
    application.include_router(envelopes.router)
    application.include_router(events.router)
    application.add_exception_handler(SigningEngineError, signing_error_handler)

    if settings.allowed_origins:
        application.add_middleware(
            CORSMiddleware,
            allow_origins=[str(origin) for origin in settings.allowed_origins],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @application.middleware("http")
    async def reset_log_context(request: Request, call_next):
        clear_signing_context()
        return await call_next(request)

    return application


app = create_application()
