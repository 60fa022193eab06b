"""Dependency injection for FastAPI endpoints"""

from fastapi import Request

from elly_gateway.infrastructure.events import ProgressPublisher
from elly_gateway.services.onboarding import OnboardingPipeline


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_pipeline(request: Request) -> OnboardingPipeline:
    """Provide the process-wide onboarding pipeline"""
    return request.app.state.pipeline


def get_publisher(request: Request) -> ProgressPublisher:
    """Provide the process-wide progress publisher"""
    return request.app.state.publisher


def get_heartbeat_interval(request: Request) -> float:
    return request.app.state.heartbeat_interval
