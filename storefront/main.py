import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storefront.api.v1.auth import router as auth_router
from storefront.api.v1.two_factor import router as two_factor_router
from storefront.core.config import Settings, get_settings
from storefront.core.crypto import SecretCodec
from storefront.core.db import build_engine, build_sessionmaker, create_tables
from storefront.core.errors import CryptoError, StorefrontError
from storefront.core.log import setup_logging
from storefront.services.accounts import AccountService
from storefront.services.mailer import Mailer
from storefront.services.two_factor import TwoFactorService

logger = logging.getLogger(__name__)


async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    if isinstance(exc, CryptoError):
        logger.error("Undecryptable 2FA secret on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"message": "Server error"})


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # malformed input never reaches the services
    return JSONResponse(status_code=400, content={"errors": jsonable_encoder(exc.errors())})


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    engine = build_engine(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.AUTO_CREATE_TABLES:
            await create_tables(engine)
        yield
        await engine.dispose()

    app = FastAPI(title=settings.APP_NAME, version="0.1.0", lifespan=lifespan)

    two_factor = TwoFactorService(settings, SecretCodec(settings.encryption_key))
    app.state.settings = settings
    app.state.engine = engine
    app.state.sessionmaker = build_sessionmaker(engine)
    app.state.two_factor = two_factor
    app.state.accounts = AccountService(settings, Mailer(settings), two_factor)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StorefrontError, storefront_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(auth_router)
    app.include_router(two_factor_router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app
