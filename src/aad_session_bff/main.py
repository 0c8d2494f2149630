# src/aad_session_bff/main.py

from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from . import __version__
from .auth import router as auth_router
from .config import Settings, get_settings
from .errors import AuthBffError
from .logging_config import configure_logging, get_logger
from .middleware import SessionMiddleware
from .proxy import create_proxy_router
from .session import SessionStore, create_session_store
from .token_client import TokenExchangeClient

logger = get_logger("main")


async def handle_auth_bff_error(request: Request, exc: AuthBffError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s %s", request.method, request.url.path, exc.code, exc.message)
    else:
        logger.info("%s %s rejected: %s %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_response().model_dump())


def create_app(
    settings: Optional[Settings] = None,
    token_client: Optional[TokenExchangeClient] = None,
    session_store: Optional[SessionStore] = None,
    proxy_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title="AAD Session BFF",
        description="Backend-For-Frontend holding Azure AD tokens in a server-side session and proxying the remote API.",
        version=__version__,
    )
    app.state.settings = settings
    app.state.token_client = token_client or TokenExchangeClient.from_settings(settings)
    app.state.proxy_client = proxy_client or httpx.AsyncClient(timeout=settings.PROXY_TIMEOUT_SECONDS)
    store = session_store or create_session_store(settings)

    app.add_middleware(
        SessionMiddleware,
        store=store,
        secret=settings.SESSION_COOKIE_SECRET,
        cookie_name=settings.SESSION_COOKIE_NAME,
        max_age=settings.SESSION_EXPIRES_SECONDS,
        secure=settings.SESSION_COOKIE_SECURE,
    )
    app.add_exception_handler(AuthBffError, handle_auth_bff_error)

    app.include_router(auth_router)
    app.include_router(create_proxy_router(settings.LOCAL_API_PATH, settings.REMOTE_API_BASE))

    @app.get("/")
    async def home():
        return {"message": "AAD Session BFF is running!"}

    @app.on_event("startup")
    async def startup_event():
        logger.info("--- AAD Session BFF (FastAPI) Starting Up ---")
        logger.info("Authority: %s", settings.AUTHORITY)
        logger.info("Client ID: %s", settings.AZURE_CLIENT_ID)
        logger.info("Resource URI: %s", settings.AZURE_RESOURCE_URI)
        logger.info("Proxy: %s/* -> %s/*", settings.LOCAL_API_PATH, settings.REMOTE_API_BASE)
        logger.info("Session store: %s, secure cookie: %s", settings.SESSION_STORE, settings.SESSION_COOKIE_SECURE)

    @app.on_event("shutdown")
    async def shutdown_event():
        await app.state.token_client.aclose()
        if proxy_client is None:
            await app.state.proxy_client.aclose()

    return app
