"""Per-bank accounts consent acquisition"""

import logging
from typing import Dict, List

from elly_gateway.domain.models import AccountsConsent, CONSENT_APPROVED, CONSENT_PENDING
from elly_gateway.infrastructure.clients.bank import OpenBankClient
from elly_gateway.infrastructure.database.store import OnboardingStore
from elly_gateway.utils.concurrency import gather_isolated

logger = logging.getLogger(__name__)


class ConsentOrchestrator:
    """Obtains read-accounts consents for a user at several banks in parallel"""

    def __init__(self, bank_client: OpenBankClient, store: OnboardingStore):
        self.bank_client = bank_client
        self.store = store

    async def ensure_consent(self, user_id: int, bank: str, client_id: str) -> AccountsConsent:
        """
        Return an approved cached consent, or request a new one and persist it.

        Raises:
            ExternalServiceError: If the bank cannot issue a consent
        """
        cached = await self.store.find_cached_consent(user_id, bank)
        if cached is not None and cached.is_approved:
            logger.debug("Consent cache hit", extra={"bank": bank, "user_id": user_id})
            return cached

        consent = await self.bank_client.ensure_accounts_consent(bank, client_id, user_id)
        return await self.store.upsert_consent(consent)

    async def _consent_status(self, user_id: int, bank: str, client_id: str) -> str:
        consent = await self.ensure_consent(user_id, bank, client_id)
        return CONSENT_APPROVED if consent.is_approved else CONSENT_PENDING

    async def request_consents(self, user_id: int, client_id: str, banks: List[str]) -> Dict[str, str]:
        """Map each bank to "approved" or "pending"; a failing bank is "pending" """
        statuses = await gather_isolated(
            {bank: self._consent_status(user_id, bank, client_id) for bank in banks},
            fallback=lambda bank, error: CONSENT_PENDING,
        )
        logger.info("Consents collected", extra={"user_id": user_id, "consents": statuses})
        return statuses
