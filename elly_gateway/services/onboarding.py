"""Onboarding pipeline - aggregates bank transactions and detects obligations

Phases and progress:
    CONSENTS_IN_PROGRESS (5) -> consents collected (25)
    -> TRANSACTIONS_COLLECTING (30) -> transactions collected (60)
    -> DONE (100), or FAILED (100) from any non-terminal phase

Every transition is persisted and mirrored to the job's progress stream.
"""

import asyncio
import logging
import re
import time
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

from elly_gateway.config import settings
from elly_gateway.domain.exceptions import UserNotFoundError, ValidationError
from elly_gateway.domain.mock_transactions import with_mock_transactions
from elly_gateway.domain.models import OnboardingJob, OnboardingPhase, Payment
from elly_gateway.domain.obligations import detect_obligations
from elly_gateway.domain.payments import build_payments
from elly_gateway.infrastructure.clients.bank import OpenBankClient
from elly_gateway.infrastructure.database.store import OnboardingStore
from elly_gateway.infrastructure.events import EVENT_DONE, EVENT_FAILED, EVENT_PROGRESS, ProgressPublisher
from elly_gateway.infrastructure.observability.logging import log_onboarding_complete
from elly_gateway.infrastructure.observability.metrics import record_onboarding
from elly_gateway.services.collector import TransactionCollector
from elly_gateway.services.consents import ConsentOrchestrator
from elly_gateway.utils.date_utils import lookback_window

logger = logging.getLogger(__name__)

_CLIENT_ID_INVALID_CHARS = re.compile(r"[^a-z0-9_-]")


def payment_payload(payment: Payment) -> Dict[str, Any]:
    return {
        "id": payment.id,
        "category": payment.category,
        "amountRub": payment.amount_rub,
        "day": payment.day,
        "status": payment.status,
    }


class OnboardingPipeline:
    """Starts onboarding runs as background tasks and drives them to DONE or FAILED"""

    def __init__(
        self,
        store: OnboardingStore,
        bank_client: OpenBankClient,
        publisher: ProgressPublisher,
        lookback_days: int | None = None,
        currency: str | None = None,
        default_banks: List[str] | None = None,
        inject_demo_transactions: bool | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.bank_client = bank_client
        self.publisher = publisher
        self.consents = ConsentOrchestrator(bank_client, store)
        self.collector = TransactionCollector(bank_client, self.consents)
        self.lookback_days = lookback_days or settings.lookback_days
        self.currency = currency or settings.currency
        self.default_banks = default_banks or settings.default_banks
        self.inject_demo_transactions = (
            settings.inject_demo_transactions if inject_demo_transactions is None else inject_demo_transactions
        )
        self.clock = clock
        self._tasks: Set[asyncio.Task] = set()

    # Public API

    async def start_onboarding(self, user_id: int, banks: Optional[List[str]] = None) -> OnboardingJob:
        """
        Create the job and schedule the run; returns without waiting for it.

        Raises:
            UserNotFoundError: If the user has no email on record
            ValidationError: If no client id can be derived from the email
        """
        bank_codes = self._normalize_banks(banks)
        client_id = await self.derive_client_id(user_id)

        job = OnboardingJob(
            job_id=f"onb_{uuid.uuid4().hex[:16]}",
            user_id=user_id,
            phase=OnboardingPhase.CONSENTS_IN_PROGRESS,
            progress=5,
        )
        await self.store.create_job(job)
        self.publisher.open(job.job_id)
        self._notify(job, {"banks": bank_codes})

        task = asyncio.create_task(self.run(job, client_id, bank_codes), name=job.job_id)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.info("Onboarding started", extra={"job_id": job.job_id, "user_id": user_id, "banks": bank_codes})
        return job

    async def get_job_status(self, job_id: str) -> Optional[OnboardingJob]:
        return await self.store.get_job(job_id)

    async def drain(self) -> None:
        """Wait for every in-flight run to finish"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # Run driver

    async def run(self, job: OnboardingJob, client_id: str, banks: List[str]) -> OnboardingJob:
        """Drive one run to a terminal phase; never raises"""
        started = time.monotonic()
        state = job

        try:
            self._check_banks(banks)

            # 1. Consents, all banks in parallel
            per_bank = await self.consents.request_consents(job.user_id, client_id, banks)
            state = await self._transition(state, {"consents": per_bank}, progress=25, per_bank_consent=per_bank)

            # 2. Transactions from approved banks
            state = await self._transition(state, phase=OnboardingPhase.TRANSACTIONS_COLLECTING, progress=30)
            now = self.clock()
            from_iso, to_iso = lookback_window(self.lookback_days, now)
            per_bank_tx = await self.collector.collect_all(job.user_id, client_id, per_bank, from_iso, to_iso)
            state = await self._transition(state, progress=60)

            # 3. Detection + persistence
            today = now.date()
            transactions = [tx for bank in banks for tx in per_bank_tx.get(bank, [])]
            if self.inject_demo_transactions:
                transactions = with_mock_transactions(transactions, today)

            obligations = detect_obligations(
                user_id=job.user_id,
                transactions=transactions,
                today=today,
                source="agg",
                currency=self.currency,
                now=now,
            )
            await self.store.upsert_obligations(obligations)

            # 4. Completion + payload for the client
            payments = build_payments(obligations, today)
            state = await self._transition(
                state, phase=OnboardingPhase.DONE, progress=100, obligations_detected=len(obligations)
            )
            self.publisher.publish(
                job.job_id,
                EVENT_DONE,
                {"obligationsDetected": len(obligations), "payments": [payment_payload(p) for p in payments]},
            )

            duration = time.monotonic() - started
            record_onboarding("done", duration, (o.category for o in obligations))
            log_onboarding_complete(job.job_id, job.user_id, len(obligations), per_bank, duration * 1000)

        except Exception as e:
            logger.warning(
                f"Onboarding failed: {e}",
                exc_info=True,
                extra={"job_id": job.job_id, "phase": state.phase.value},
            )
            state = await self._fail(state, str(e) or type(e).__name__)
            record_onboarding("failed", time.monotonic() - started)

        finally:
            self.publisher.close(job.job_id)

        return state

    async def _transition(
        self, state: OnboardingJob, detail: Optional[Dict[str, Any]] = None, **changes: Any
    ) -> OnboardingJob:
        new_state = replace(state, **changes)
        await self.store.update_job(new_state)
        self._notify(new_state, detail)
        return new_state

    async def _fail(self, state: OnboardingJob, error: str) -> OnboardingJob:
        failed = replace(state, phase=OnboardingPhase.FAILED, progress=100, error=error)
        try:
            await self.store.update_job(failed)
        except Exception as e:
            # Job row keeps its last phase; the stream still reports the failure
            logger.error(f"Could not persist failed job: {e}", extra={"job_id": state.job_id})
        self._notify(failed)
        self.publisher.publish(state.job_id, EVENT_FAILED, {"error": error})
        return failed

    def _notify(self, job: OnboardingJob, detail: Optional[Dict[str, Any]] = None) -> None:
        payload: Dict[str, Any] = {"phase": job.phase.value, "progress": job.progress}
        if detail is not None:
            payload["detail"] = detail
        self.publisher.publish(job.job_id, EVENT_PROGRESS, payload)

    # Helpers

    def _normalize_banks(self, banks: Optional[List[str]]) -> List[str]:
        codes: List[str] = []
        for bank in banks or self.default_banks:
            code = bank.strip().lower()
            if code and code not in codes:
                codes.append(code)
        if not codes:
            raise ValidationError("At least one bank code is required")
        return codes

    def _check_banks(self, banks: List[str]) -> None:
        """
        Raises:
            ConfigurationError: If any bank has no configured base URL
        """
        for bank in banks:
            self.bank_client.base_url(bank)

    async def derive_client_id(self, user_id: int) -> str:
        """Client id is the normalized local part of the user's email"""
        email = await self.store.lookup_user_email(user_id)
        if email is None:
            raise UserNotFoundError(f"Email not found for userId={user_id}")

        local = email.split("@", 1)[0].strip()
        if not local:
            raise ValidationError(f"Cannot derive clientId from email='{email}'")
        return _CLIENT_ID_INVALID_CHARS.sub("-", local.lower())
