"""Open Banking HTTP client for consents, accounts and transactions"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx

from elly_gateway.config import settings
from elly_gateway.domain.exceptions import (
    ConfigurationError,
    ExternalServiceError,
    PaymentNotSupportedError,
)
from elly_gateway.domain.models import AccountRef, AccountsConsent, TxRecord
from elly_gateway.infrastructure.clients.parsing import parse_accounts, parse_consent, parse_transactions
from elly_gateway.infrastructure.clients.tokens import BankTokenCache
from elly_gateway.infrastructure.observability.metrics import (
    bank_fetch_failures_counter,
    bank_request_latency_histogram,
)
from elly_gateway.utils.date_utils import parse_iso_datetime, to_iso_seconds

logger = logging.getLogger(__name__)

CONSENT_PERMISSIONS = ["ReadAccountsDetail", "ReadBalances", "ReadTransactionsDetail"]
REQUESTING_BANK_NAME = "Elly App"


class OpenBankClient:
    """Client for the per-bank Open Banking APIs"""

    def __init__(
        self,
        banks: Dict[str, str] | None = None,
        team_client_id: str | None = None,
        team_client_secret: str | None = None,
        timeout: float | None = None,
        page_limit: int | None = None,
        tokens: BankTokenCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.banks = {code.lower(): url.rstrip("/") for code, url in (banks or settings.banks).items()}
        self.team_client_id = team_client_id if team_client_id is not None else settings.team_client_id
        self.team_client_secret = (
            team_client_secret if team_client_secret is not None else settings.team_client_secret
        )
        self.timeout = timeout or settings.http_timeout_seconds
        self.page_limit = page_limit or settings.transactions_page_limit
        self.tokens = tokens or BankTokenCache(
            self.fetch_bank_token,
            refresh_margin_seconds=settings.token_refresh_margin_seconds,
            default_ttl_seconds=settings.default_token_ttl_seconds,
        )
        self._transport = transport

    def base_url(self, bank: str) -> str:
        """
        Raises:
            ConfigurationError: If the bank code has no configured base URL
        """
        base = self.banks.get(bank.lower())
        if not base:
            raise ConfigurationError(f"No baseUrl configured for bank='{bank}'")
        return base

    async def _request(self, method: str, bank: str, path: str, stage: str, **kwargs: Any) -> Any:
        """
        Perform one call and decode the JSON body.

        Raises:
            ExternalServiceError: On timeout, HTTP errors, transport errors, or invalid JSON
        """
        base = self.base_url(bank)
        async with httpx.AsyncClient(base_url=base, timeout=self.timeout, transport=self._transport) as client:
            try:
                with bank_request_latency_histogram.labels(stage=stage).time():
                    response = await client.request(method, path, **kwargs)
                response.raise_for_status()
                return response.json()

            except httpx.TimeoutException as e:
                bank_fetch_failures_counter.labels(bank=bank, stage=stage).inc()
                raise ExternalServiceError(
                    f"Bank API timeout after {self.timeout}s ({stage})", bank=bank
                ) from e
            except httpx.HTTPStatusError as e:
                bank_fetch_failures_counter.labels(bank=bank, stage=stage).inc()
                logger.warning(
                    "Bank API http error",
                    extra={
                        "bank": bank,
                        "stage": stage,
                        "status": e.response.status_code,
                        "body_snippet": e.response.text[:300],
                    },
                )
                raise ExternalServiceError(
                    f"Bank API error: {e.response.status_code} ({stage})",
                    bank=bank,
                    status_code=e.response.status_code,
                ) from e
            except httpx.RequestError as e:
                bank_fetch_failures_counter.labels(bank=bank, stage=stage).inc()
                raise ExternalServiceError(f"Bank API unreachable ({stage}): {e}", bank=bank) from e
            except ValueError as e:
                bank_fetch_failures_counter.labels(bank=bank, stage=stage).inc()
                raise ExternalServiceError(f"Invalid JSON from bank ({stage}): {e}", bank=bank) from e

    def _headers(self, token: str, consent_id: str | None = None) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {token}",
            "X-Requesting-Bank": self.team_client_id,
            "Accept": "application/json",
        }
        if consent_id:
            headers["X-Consent-Id"] = consent_id
        return headers

    async def fetch_bank_token(self, bank: str) -> Tuple[str, Optional[int]]:
        """Obtain a fresh bank token; returns (access_token, expires_in)"""
        data = await self._request(
            "POST",
            bank,
            "/auth/bank-token",
            stage="token",
            params={"client_id": self.team_client_id, "client_secret": self.team_client_secret},
        )
        try:
            token = data["access_token"]
            expires_in = data.get("expires_in")
            return token, int(expires_in) if expires_in is not None else None
        except (KeyError, TypeError, ValueError) as e:
            bank_fetch_failures_counter.labels(bank=bank, stage="token").inc()
            raise ExternalServiceError(f"Invalid token response from bank: {e}", bank=bank) from e

    async def ensure_accounts_consent(self, bank: str, client_id: str, user_id: int) -> AccountsConsent:
        """Request a read-accounts consent for the client at the bank"""
        token = await self.tokens.get_token(bank)
        body = {
            "client_id": client_id,
            "permissions": CONSENT_PERMISSIONS,
            "reason": "Elly onboarding aggregation",
            "requesting_bank": self.team_client_id,
            "requesting_bank_name": REQUESTING_BANK_NAME,
        }

        logger.info("Consent requested", extra={"bank": bank, "client_id": client_id})
        data = await self._request(
            "POST",
            bank,
            "/account-consents/request",
            stage="consent",
            json=body,
            headers=self._headers(token),
        )
        consent_id, status = parse_consent(data, bank)
        logger.info("Consent received", extra={"bank": bank, "consent_id": consent_id, "status": status})

        return AccountsConsent(
            user_id=user_id,
            bank=bank.lower(),
            client_id=client_id,
            consent_id=consent_id,
            status=status,
            created_at=datetime.now(timezone.utc),
        )

    async def list_accounts(self, bank: str, client_id: str, consent_id: str) -> List[AccountRef]:
        token = await self.tokens.get_token(bank)
        data = await self._request(
            "GET",
            bank,
            "/accounts",
            stage="accounts",
            params={"client_id": client_id},
            headers=self._headers(token, consent_id),
        )
        accounts = parse_accounts(data, bank.lower())
        if not accounts:
            logger.warning("Bank returned no accounts", extra={"bank": bank, "client_id": client_id})
        return accounts

    async def list_transactions(
        self, account: AccountRef, from_iso: str, to_iso: str, consent_id: str
    ) -> List[TxRecord]:
        """Transactions booked on the account inside [from_iso, to_iso]"""
        token = await self.tokens.get_token(account.bank)
        data = await self._request(
            "GET",
            account.bank,
            f"/accounts/{account.account_id}/transactions",
            stage="transactions",
            params={
                "from_booking_date_time": _seconds_precision(from_iso),
                "to_booking_date_time": _seconds_precision(to_iso),
                "limit": self.page_limit,
            },
            headers=self._headers(token, consent_id),
        )
        records = parse_transactions(data, account)
        logger.info(
            "Transactions listed",
            extra={"bank": account.bank, "account_id": account.account_id, "count": len(records)},
        )
        return records

    async def transfer(
        self,
        debtor: AccountRef,
        creditor: AccountRef,
        amount_minor: int,
        client_id: str,
        comment: str | None = None,
    ) -> str:
        raise PaymentNotSupportedError("Payment transfers are not available")


def _seconds_precision(iso: str) -> str:
    """Truncate an ISO instant to whole seconds; unparseable input is passed through"""
    try:
        return to_iso_seconds(parse_iso_datetime(iso))
    except ValueError:
        return iso
