"""Async persistence facade used by the onboarding pipeline

Each call opens its own session, runs the repository work in a worker thread,
and commits, so concurrent pipeline branches never share a session.
"""

import asyncio
from typing import Callable, List, Optional, TypeVar

from sqlalchemy.orm import Session, sessionmaker

from elly_gateway.domain.models import AccountsConsent, Obligation, OnboardingJob
from elly_gateway.infrastructure.database.repositories import (
    ConsentRepository,
    JobRepository,
    ObligationRepository,
    UserRepository,
)

T = TypeVar("T")


class OnboardingStore:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def _in_session(self, work: Callable[[Session], T]) -> T:
        with self.session_factory() as db:
            try:
                result = work(db)
                db.commit()
                return result
            except Exception:
                db.rollback()
                raise

    async def _run(self, work: Callable[[Session], T]) -> T:
        return await asyncio.to_thread(self._in_session, work)

    async def lookup_user_email(self, user_id: int) -> Optional[str]:
        return await self._run(lambda db: UserRepository(db).get_email(user_id))

    async def create_job(self, job: OnboardingJob) -> OnboardingJob:
        return await self._run(lambda db: JobRepository(db).create(job))

    async def update_job(self, job: OnboardingJob) -> OnboardingJob:
        return await self._run(lambda db: JobRepository(db).update(job))

    async def get_job(self, job_id: str) -> Optional[OnboardingJob]:
        return await self._run(lambda db: JobRepository(db).get(job_id))

    async def find_cached_consent(self, user_id: int, bank: str) -> Optional[AccountsConsent]:
        return await self._run(lambda db: ConsentRepository(db).find(user_id, bank))

    async def upsert_consent(self, consent: AccountsConsent) -> AccountsConsent:
        return await self._run(lambda db: ConsentRepository(db).upsert(consent))

    async def upsert_obligations(self, obligations: List[Obligation]) -> None:
        await self._run(lambda db: ObligationRepository(db).upsert_all(obligations))
