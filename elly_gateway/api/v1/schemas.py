"""Pydantic schemas for API request/response validation"""

from datetime import date
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class StartOnboardingRequest(BaseModel):
    """Request body for POST /v1/onboarding/start"""

    user_id: int = Field(..., gt=0, description="User identifier")
    banks: Optional[List[str]] = Field(None, description="Bank codes; configured defaults when omitted")


class StartOnboardingResponse(BaseModel):
    """Response for POST /v1/onboarding/start"""

    job_id: str
    status: str


class OnboardingJobResponse(BaseModel):
    """Response for GET /v1/onboarding/{job_id}"""

    job_id: str
    user_id: int
    phase: str
    progress: int
    per_bank_consent: Dict[str, str]
    obligations_detected: Optional[int] = None
    error: Optional[str] = None


class ObligationSchema(BaseModel):
    """Single detected obligation"""

    id: str
    title: str
    category: str
    currency: str
    avg_amount_minor: int
    periodicity: str
    typical_day: Optional[int] = None
    next_due_date: date
    repeats: int
    confidence: float


class ObligationsResponse(BaseModel):
    """Response for GET /v1/obligations"""

    user_id: int
    obligations: List[ObligationSchema]
