"""GET /v1/obligations - Active obligations detected for a user"""

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from elly_gateway.api.v1.schemas import ObligationSchema, ObligationsResponse
from elly_gateway.infrastructure.database.repositories import ObligationRepository
from elly_gateway.infrastructure.database.session import get_db

router = APIRouter()


@router.get("/obligations", response_model=ObligationsResponse)
def get_obligations(
    user_id: int = Query(..., description="User identifier"),
    db: Session = Depends(get_db),
):
    """
    Retrieve obligations due from 3 days ago onwards.

    Returns:
        Obligations ordered by next due date, category and title
    """
    obligation_repo = ObligationRepository(db)
    obligations = obligation_repo.list_active(user_id, today=date.today())

    items = [
        ObligationSchema(
            id=o.id,
            title=o.title,
            category=o.category,
            currency=o.currency,
            avg_amount_minor=o.avg_amount_minor,
            periodicity=o.periodicity.value,
            typical_day=o.typical_day,
            next_due_date=o.next_due_date,
            repeats=o.repeats,
            confidence=o.confidence,
        )
        for o in obligations
    ]

    return ObligationsResponse(user_id=user_id, obligations=items)
