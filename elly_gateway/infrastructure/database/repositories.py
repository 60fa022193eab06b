"""Data access layer for onboarding entities"""

from datetime import date, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from elly_gateway.domain.models import (
    AccountsConsent,
    Obligation,
    OnboardingJob,
    OnboardingPhase,
    Periodicity,
)
from elly_gateway.infrastructure.database.models import (
    AccountsConsentRow,
    ObligationRow,
    OnboardingJobRow,
    UserRow,
)
from elly_gateway.utils.date_utils import as_utc


class UserRepository:
    """Repository for users"""

    def __init__(self, db: Session):
        self.db = db

    def get_email(self, user_id: int) -> Optional[str]:
        row = self.db.get(UserRow, user_id)
        return row.email if row else None


class JobRepository:
    """Repository for onboarding job snapshots"""

    def __init__(self, db: Session):
        self.db = db

    def create(self, job: OnboardingJob) -> OnboardingJob:
        self.db.add(
            OnboardingJobRow(
                job_id=job.job_id,
                user_id=job.user_id,
                phase=job.phase.value,
                progress=job.progress,
                per_bank=dict(job.per_bank_consent),
                obligations_detected=job.obligations_detected,
                error=job.error,
            )
        )
        self.db.flush()
        return job

    def update(self, job: OnboardingJob) -> OnboardingJob:
        row = self.db.get(OnboardingJobRow, job.job_id)
        if row is None:
            return self.create(job)

        row.phase = job.phase.value
        row.progress = job.progress
        row.per_bank = dict(job.per_bank_consent)
        row.obligations_detected = job.obligations_detected
        row.error = job.error
        self.db.flush()
        return job

    def get(self, job_id: str) -> Optional[OnboardingJob]:
        row = self.db.get(OnboardingJobRow, job_id)
        if row is None:
            return None
        return OnboardingJob(
            job_id=row.job_id,
            user_id=row.user_id,
            phase=OnboardingPhase(row.phase),
            progress=row.progress,
            per_bank_consent=dict(row.per_bank or {}),
            obligations_detected=row.obligations_detected,
            error=row.error,
        )


class ConsentRepository:
    """Repository for accounts consents, one per (user, bank)"""

    def __init__(self, db: Session):
        self.db = db

    def find(self, user_id: int, bank: str) -> Optional[AccountsConsent]:
        row = self.db.get(AccountsConsentRow, (user_id, bank.lower()))
        if row is None:
            return None
        return AccountsConsent(
            user_id=row.user_id,
            bank=row.bank,
            client_id=row.client_id,
            consent_id=row.consent_id,
            status=row.status,
            created_at=as_utc(row.created_at),
        )

    def upsert(self, consent: AccountsConsent) -> AccountsConsent:
        self.db.merge(
            AccountsConsentRow(
                user_id=consent.user_id,
                bank=consent.bank.lower(),
                client_id=consent.client_id,
                consent_id=consent.consent_id,
                status=consent.status,
                created_at=consent.created_at,
            )
        )
        self.db.flush()
        return consent


class ObligationRepository:
    """Repository for detected obligations"""

    def __init__(self, db: Session):
        self.db = db

    def upsert_all(self, obligations: List[Obligation]) -> None:
        """Insert or overwrite by deterministic id"""
        for o in obligations:
            self.db.merge(
                ObligationRow(
                    id=o.id,
                    user_id=o.user_id,
                    source=o.source,
                    merchant_key=o.merchant_key,
                    title=o.title,
                    category=o.category,
                    currency=o.currency,
                    avg_amount_minor=o.avg_amount_minor,
                    periodicity=o.periodicity.value,
                    typical_day=o.typical_day,
                    next_due_date=o.next_due_date,
                    repeats=o.repeats,
                    confidence=o.confidence,
                    created_at=o.created_at,
                )
            )
        self.db.flush()

    def list_active(self, user_id: int, today: date, grace_days: int = 3) -> List[Obligation]:
        """Obligations due no earlier than ``grace_days`` before today"""
        rows = (
            self.db.query(ObligationRow)
            .filter(ObligationRow.user_id == user_id)
            .filter(ObligationRow.next_due_date >= today - timedelta(days=grace_days))
            .order_by(ObligationRow.next_due_date.asc(), ObligationRow.category.asc(), ObligationRow.title.asc())
            .all()
        )
        return [
            Obligation(
                id=r.id,
                user_id=r.user_id,
                source=r.source,
                merchant_key=r.merchant_key,
                title=r.title,
                category=r.category,
                currency=r.currency,
                avg_amount_minor=r.avg_amount_minor,
                periodicity=Periodicity(r.periodicity),
                typical_day=r.typical_day,
                next_due_date=r.next_due_date,
                repeats=r.repeats,
                confidence=r.confidence,
                created_at=as_utc(r.created_at),
            )
            for r in rows
        ]
