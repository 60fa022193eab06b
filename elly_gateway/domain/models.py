"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Dict, Optional


class OnboardingPhase(str, Enum):
    """Phases of one aggregation run"""

    CONSENTS_IN_PROGRESS = "CONSENTS_IN_PROGRESS"
    TRANSACTIONS_COLLECTING = "TRANSACTIONS_COLLECTING"
    DONE = "DONE"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (OnboardingPhase.DONE, OnboardingPhase.FAILED)


class Periodicity(str, Enum):
    MONTHLY = "MONTHLY"
    WEEKLY = "WEEKLY"


CONSENT_APPROVED = "approved"
CONSENT_PENDING = "pending"


@dataclass(frozen=True)
class AccountRef:
    """Account at a specific bank"""

    bank: str
    account_id: str
    nickname: Optional[str] = None


@dataclass(frozen=True)
class TxRecord:
    """Bank transaction from external API"""

    account: AccountRef
    booked_at: datetime
    amount_minor: int  # negative = debit, positive = credit
    description: Optional[str]
    counterparty: Optional[str]


@dataclass(frozen=True)
class AccountsConsent:
    """Bank-granted permission to read a user's accounts"""

    user_id: int
    bank: str
    client_id: str
    consent_id: str
    status: str
    created_at: datetime

    @property
    def is_approved(self) -> bool:
        return self.status == CONSENT_APPROVED


@dataclass(frozen=True)
class Obligation:
    """Detected recurring outgoing payment"""

    id: str
    user_id: int
    source: str
    merchant_key: str
    title: str
    category: str
    currency: str
    avg_amount_minor: int
    periodicity: Periodicity
    typical_day: Optional[int]
    next_due_date: date
    repeats: int
    confidence: float
    created_at: datetime


@dataclass(frozen=True)
class OnboardingJob:
    """Snapshot of one onboarding run"""

    job_id: str
    user_id: int
    phase: OnboardingPhase
    progress: int = 0  # 0..100
    per_bank_consent: Dict[str, str] = field(default_factory=dict)
    obligations_detected: Optional[int] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class Payment:
    """User-facing view of an obligation"""

    id: str
    category: str
    amount_rub: float
    day: int
    status: str  # "pending" | "overdue"
