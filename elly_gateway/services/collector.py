"""Account and transaction collection for one bank"""

import logging
from typing import Dict, List

from elly_gateway.domain.exceptions import MissingConsentError
from elly_gateway.domain.models import CONSENT_APPROVED, TxRecord
from elly_gateway.infrastructure.clients.bank import OpenBankClient
from elly_gateway.services.consents import ConsentOrchestrator
from elly_gateway.utils.concurrency import gather_isolated

logger = logging.getLogger(__name__)


class TransactionCollector:
    """Lists accounts and their transactions, one account at a time per bank"""

    def __init__(self, bank_client: OpenBankClient, consents: ConsentOrchestrator):
        self.bank_client = bank_client
        self.consents = consents

    async def collect_bank(
        self, user_id: int, client_id: str, bank: str, from_iso: str, to_iso: str
    ) -> List[TxRecord]:
        """
        Collect every account's transactions at one bank.

        Accounts are walked sequentially to stay inside per-bank rate limits.

        Raises:
            MissingConsentError: If the bank's consent is not approved
            ExternalServiceError: On bank API failures
        """
        consent = await self.consents.ensure_consent(user_id, bank, client_id)
        if not consent.is_approved:
            raise MissingConsentError(f"Consent not approved for {bank}")

        accounts = await self.bank_client.list_accounts(bank, client_id, consent.consent_id)

        collected: List[TxRecord] = []
        for account in accounts:
            collected.extend(
                await self.bank_client.list_transactions(account, from_iso, to_iso, consent.consent_id)
            )

        logger.info("Bank collected", extra={"bank": bank, "accounts": len(accounts), "tx": len(collected)})
        return collected

    async def _collect_if_approved(
        self, user_id: int, client_id: str, bank: str, status: str, from_iso: str, to_iso: str
    ) -> List[TxRecord]:
        if status != CONSENT_APPROVED:
            logger.info("Skip bank, consent not approved", extra={"bank": bank, "status": status})
            return []
        return await self.collect_bank(user_id, client_id, bank, from_iso, to_iso)

    async def collect_all(
        self,
        user_id: int,
        client_id: str,
        per_bank_consent: Dict[str, str],
        from_iso: str,
        to_iso: str,
    ) -> Dict[str, List[TxRecord]]:
        """Collect from all banks in parallel; a failing bank contributes nothing"""
        per_bank = await gather_isolated(
            {
                bank: self._collect_if_approved(user_id, client_id, bank, status, from_iso, to_iso)
                for bank, status in per_bank_consent.items()
            },
            fallback=lambda bank, error: [],
        )
        logger.info(
            "Transactions collected",
            extra={
                "total": sum(len(v) for v in per_bank.values()),
                "per_bank": {bank: len(v) for bank, v in per_bank.items()},
            },
        )
        return per_bank
