"""User-facing payment list built from detected obligations"""

from datetime import date
from typing import List

from elly_gateway.domain.models import Obligation, Payment

CATEGORY_LABELS = {
    "utility": "ЖКХ",
    "loan": "Кредит",
    "rent": "Аренда",
    "telecom": "Связь",
    "subscription": "Подписка",
}
DEFAULT_LABEL = "Другое"

STATUS_PENDING = "pending"
STATUS_OVERDUE = "overdue"


def to_payment(obligation: Obligation, today: date) -> Payment:
    """
    Map an obligation to its display record.

    Example:
        avg_amount_minor=-79000, typical_day=12 -> amount_rub=790.0, day=12
    """
    label = CATEGORY_LABELS.get(obligation.category.lower(), DEFAULT_LABEL)
    amount_rub = round(abs(obligation.avg_amount_minor) / 100.0, 2)
    day = obligation.typical_day if obligation.typical_day is not None else obligation.next_due_date.day
    status = STATUS_OVERDUE if obligation.next_due_date < today else STATUS_PENDING

    return Payment(
        id=obligation.id,
        category=label,
        amount_rub=amount_rub,
        day=day,
        status=status,
    )


def build_payments(obligations: List[Obligation], today: date) -> List[Payment]:
    """Payments ordered by day of month"""
    return sorted((to_payment(o, today) for o in obligations), key=lambda p: p.day)
