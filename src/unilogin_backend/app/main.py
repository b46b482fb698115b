# src/unilogin_backend/app/main.py
from contextlib import asynccontextmanager
import logging
from typing import Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Load .env before settings are read
load_dotenv()

from unilogin_backend.app.core.logging import setup_logging
setup_logging()

from unilogin_backend.app.api.routes.oauth2 import legacy_router, router as oauth2_router
from unilogin_backend.app.auth.deps import current_account
from unilogin_backend.app.auth.orchestrator import CallbackOrchestrator
from unilogin_backend.app.auth.registry import ProviderRegistry, build_registry
from unilogin_backend.app.auth.session import SessionIssuer
from unilogin_backend.app.auth.state_store import StateStore, build_state_store
from unilogin_backend.app.core.config import Settings, get_settings
from unilogin_backend.app.core.errors import AuthError
from unilogin_backend.app.db.init_db import init_models
from unilogin_backend.app.db.session import check_connection, create_engine_and_sessions
from unilogin_backend.app.services.identity import IdentityResolver

log = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    state_store: Optional[StateStore] = None,
    registry: Optional[ProviderRegistry] = None,
) -> FastAPI:
    """
    Wire settings -> engine, state store, provider registry, issuer, orchestrator.
    Tests pass their own store/registry; production builds both from settings.
    """
    settings = settings or get_settings()
    engine, sessions = create_engine_and_sessions(settings.database_url, echo=settings.database_echo)
    store = state_store or build_state_store(settings)
    issuer = SessionIssuer(settings.session)
    orchestrator = CallbackOrchestrator(
        registry=registry or build_registry(settings),
        state_store=store,
        resolver=IdentityResolver(sessions, link_by_email=settings.link_accounts_by_email),
        issuer=issuer,
        success_url=settings.success_url,
        login_url=settings.login_url,
        state_ttl=settings.state_ttl,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await check_connection(engine)
        await init_models(engine)
        log.info("unilogin ready (db=%s)", engine.dialect.name)
        try:
            yield
        finally:
            await store.close()
            await engine.dispose()

    app = FastAPI(title="UniLogin API", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.sessions = sessions
    app.state.issuer = issuer
    app.state.orchestrator = orchestrator

    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(AuthError)
    async def _auth_error(_request: Request, ex: AuthError):
        return JSONResponse(status_code=ex.status_code, content={"error": ex.message, "code": ex.code})

    # 1) Health check (open)
    @app.get("/healthz")
    def health():
        return {"status": "ok"}

    # 2) Who am I - validates the session credential
    @app.get("/auth/me", tags=["auth"])
    def auth_me(claims=Depends(current_account)):
        return claims

    # 3) OAuth2 login flow
    app.include_router(oauth2_router)
    app.include_router(legacy_router)

    return app


app = create_app()
