"""FastAPI application factory for Entitlement-Bridge."""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from entitlement_bridge.common.config import get_settings
from entitlement_bridge.common.logging import setup_logging
from entitlement_bridge.common.schemas import HealthResponse
from entitlement_bridge.provisioning.schemas import EventVariant


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        # Shutdown
        from entitlement_bridge.deps import close_clients
        await close_clients()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
    )

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(
            version=settings.api_version,
            event_type=EventVariant(settings.event_variant).event_type,
        )

    from entitlement_bridge.provisioning.router import router as provisioning_router

    app.include_router(provisioning_router, prefix=settings.api_prefix, tags=["provisioning"])

    return app
