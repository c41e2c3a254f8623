"""Perkcycle - benefit cycle scheduling API."""
from contextlib import asynccontextmanager

from fastapi import FastAPI

from perkcycle.config import Settings, get_settings
from perkcycle.database import create_engine_from_settings, create_session_factory, init_db
from perkcycle.services.notifications import EmailNotifier
from perkcycle.store import SqlAlchemyStore


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events."""
        engine = create_engine_from_settings(settings)
        init_db(engine)

        app.state.settings = settings
        app.state.store = SqlAlchemyStore(
            create_session_factory(engine),
            transaction_timeout=settings.transaction_timeout_seconds,
        )
        app.state.notifier = EmailNotifier.from_settings(settings)

        yield

        engine.dispose()

    app = FastAPI(
        title=settings.app_name,
        description="Materialize and monitor credit card benefit cycles",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "app": settings.app_name}

    from perkcycle.api import cron

    app.include_router(cron.router, prefix="/api")
    return app


app = create_app()
