"""Composition root: wires settings, clients and stores into a FastAPI app."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .auth.client import AuthClient
from .auth.reconciler import ProfileReconciler
from .auth.routes import router as auth_router
from .auth.storage import build_storage
from .auth.store import SessionStore
from .db.core import build_engine, create_schema
from .logging_config import configure_logging
from .profiles.rest import RestActivityStore, RestClient, RestProfileStore
from .profiles.sql import SqlActivityStore, SqlProfileStore
from .settings import Settings, get_settings
from .stats.service import StatsService

logger = logging.getLogger(__name__)


async def _build_stores(app: FastAPI, settings: Settings, auth: AuthClient):
    if settings.PROFILE_BACKEND == "sql":
        engine = build_engine(settings.DATABASE_URL)
        await create_schema(engine)
        app.state.db_engine = engine
        return SqlProfileStore(engine), SqlActivityStore(engine)

    rest = RestClient(settings, token_provider=auth.access_token)
    app.state.rest_client = rest
    return RestProfileStore(rest), RestActivityStore(rest)


async def _shutdown(app: FastAPI) -> None:
    store = getattr(app.state, "session_store", None)
    if store is not None:
        store.teardown()
    rest = getattr(app.state, "rest_client", None)
    if rest is not None:
        await rest.aclose()
    auth = getattr(app.state, "auth_client", None)
    if auth is not None:
        await auth.aclose()
    engine = getattr(app.state, "db_engine", None)
    if engine is not None:
        await engine.dispose()
    logger.info("app_shutdown")


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.LOG_LEVEL, debug_banners=settings.DEBUG_BANNERS)

        storage = build_storage(settings.STORAGE_BACKEND, settings.STORAGE_PATH)
        auth = AuthClient(settings, storage)
        app.state.auth_client = auth
        profiles, activity = await _build_stores(app, settings, auth)

        store = SessionStore(
            auth,
            profiles,
            settings=settings,
            reconciler=ProfileReconciler(profiles),
            storage=storage,
        )
        app.state.session_store = store
        app.state.stats_service = StatsService(activity)

        state = await store.initialize()
        logger.info(
            "app_startup",
            extra={
                "meta": {
                    "profile_backend": settings.PROFILE_BACKEND,
                    "storage_backend": settings.STORAGE_BACKEND,
                    "authenticated": state.is_authenticated,
                }
            },
        )
        try:
            yield
        finally:
            await _shutdown(app)

    app = FastAPI(title="serene", lifespan=lifespan)
    app.dependency_overrides[get_settings] = lambda: settings
    app.include_router(auth_router)
    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app(), host="127.0.0.1", port=8000)
