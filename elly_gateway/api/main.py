"""FastAPI application factory"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from elly_gateway.api.middleware import MetricsMiddleware, RequestIDMiddleware
from elly_gateway.api.v1 import obligations, onboarding
from elly_gateway.config import settings
from elly_gateway.infrastructure.clients.bank import OpenBankClient
from elly_gateway.infrastructure.database.session import SessionLocal, init_db
from elly_gateway.infrastructure.database.store import OnboardingStore
from elly_gateway.infrastructure.events import ProgressPublisher
from elly_gateway.infrastructure.observability.logging import setup_logging
from elly_gateway.services.onboarding import OnboardingPipeline

# Setup structured logging
setup_logging(settings.log_level, settings.service_name)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield
    # Let in-flight runs reach DONE/FAILED before shutdown
    await app.state.pipeline.drain()


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Elly Gateway",
        description="Bank aggregation and recurring obligation detection service",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Shared components, one instance per process
    publisher = ProgressPublisher(replay_size=settings.event_replay_size)
    bank_client = OpenBankClient()
    app.state.publisher = publisher
    app.state.heartbeat_interval = settings.heartbeat_interval_seconds
    app.state.pipeline = OnboardingPipeline(
        store=OnboardingStore(SessionLocal),
        bank_client=bank_client,
        publisher=publisher,
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(onboarding.router, prefix="/v1", tags=["onboarding"])
    app.include_router(obligations.router, prefix="/v1", tags=["obligations"])

    return app


app = create_app()
