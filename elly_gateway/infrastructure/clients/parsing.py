"""Tolerant parsing of bank API responses

Banks answer with either an Open Banking envelope (``{"data": {...}}``) or a
flat body. Unknown shapes yield an empty list; a malformed record is skipped
without failing the batch.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, List, Optional, Tuple

from elly_gateway.domain.exceptions import ExternalServiceError
from elly_gateway.domain.models import AccountRef, CONSENT_APPROVED, TxRecord
from elly_gateway.utils.date_utils import EPOCH, parse_iso_datetime

logger = logging.getLogger(__name__)


def _first_text(node: dict, *keys: str) -> Optional[str]:
    """Text of the first present, non-blank scalar field"""
    for key in keys:
        value = node.get(key)
        if value is None or isinstance(value, (dict, list)):
            continue
        text = str(value)
        if text.strip():
            return text
    return None


def _nested_text(node: dict, outer: str, inner: str) -> Optional[str]:
    value = node.get(outer)
    if isinstance(value, dict) and isinstance(value.get(inner), str):
        return value[inner]
    return None


def parse_accounts(payload: Any, bank: str) -> List[AccountRef]:
    """Accounts from ``{"data": {"account": [...]}}`` or ``{"accounts": [...]}``"""
    if not isinstance(payload, dict):
        return []

    data = payload.get("data")
    if isinstance(data, dict) and "account" in data:
        items, id_key = data.get("account") or [], "accountId"
    elif "accounts" in payload:
        items, id_key = payload.get("accounts") or [], "account_id"
    else:
        return []

    accounts = []
    for item in items:
        if not isinstance(item, dict) or not item.get(id_key):
            logger.debug("Skipping account without id", extra={"bank": bank})
            continue
        accounts.append(AccountRef(bank=bank, account_id=str(item[id_key]), nickname=item.get("nickname")))
    return accounts


def _transaction_items(payload: Any) -> Iterable[Any]:
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict):
        return []

    for container in (payload.get("data"), payload):
        if not isinstance(container, dict):
            continue
        for key in ("transactions", "transaction"):
            if isinstance(container.get(key), list):
                return container[key]
    return []


def parse_amount_minor(node: dict) -> Tuple[int, Optional[str]]:
    """
    Signed amount in minor units plus currency.

    Supported shapes:
    - "amount": "123.45", "currency": "RUB"
    - "amount": {"amount": "123.45", "currency": "RUB"}
    - "transactionAmount" / "value" as fallbacks

    creditDebitIndicator "Debit" negates an unsigned amount; an explicit
    minus sign is never applied twice.
    """
    amount_node = node.get("amount")
    if isinstance(amount_node, dict):
        raw, currency = amount_node.get("amount"), amount_node.get("currency")
    elif amount_node is not None:
        raw, currency = amount_node, node.get("currency")
    else:
        raw = node.get("transactionAmount", node.get("value"))
        currency = node.get("currency")

    indicator = str(node.get("creditDebitIndicator") or "").lower()
    sign = -1 if indicator == "debit" else 1

    try:
        minor = int((Decimal(str(raw)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except (InvalidOperation, ValueError, TypeError):
        minor = 0

    return (sign * minor if minor >= 0 else minor), currency


def parse_transaction(node: Any, account: AccountRef) -> Optional[TxRecord]:
    """One transaction record, or None when it cannot be read"""
    if not isinstance(node, dict):
        return None
    if _first_text(node, "transactionId", "transaction_id", "id") is None:
        return None

    try:
        amount_minor, _currency = parse_amount_minor(node)

        booking_raw = _first_text(node, "bookingDateTime", "valueDateTime", "bookingDate", "valueDate")
        booked_at = parse_iso_datetime(booking_raw) if booking_raw else EPOCH
    except ValueError:
        return None

    description = _first_text(
        node, "transactionInformation", "description", "narrative", "details"
    ) or _nested_text(node, "merchant", "name")
    counterparty = _first_text(node, "counterpartyAccount", "counterparty_account") or _nested_text(
        node, "counterparty", "accountId"
    )

    return TxRecord(
        account=account,
        booked_at=booked_at,
        amount_minor=amount_minor,
        description=description,
        counterparty=counterparty,
    )


def parse_transactions(payload: Any, account: AccountRef) -> List[TxRecord]:
    records = []
    skipped = 0
    for item in _transaction_items(payload):
        record = parse_transaction(item, account)
        if record is None:
            skipped += 1
            continue
        records.append(record)

    if skipped:
        logger.warning(
            "Skipped unreadable transactions",
            extra={"bank": account.bank, "account_id": account.account_id, "skipped": skipped},
        )
    return records


def parse_consent(payload: Any, bank: str) -> Tuple[str, str]:
    """
    Consent id and status from either:
    1) {"data": {"consentId": "...", "status": "..."}}
    2) {"consent_id": "...", "status": "approved"}

    Status defaults to "approved" when the bank omits it.
    """
    if not isinstance(payload, dict):
        raise ExternalServiceError("Consent response is not an object", bank=bank)

    data = payload.get("data")
    if isinstance(data, dict) and data.get("consentId"):
        return str(data["consentId"]), str(data.get("status") or CONSENT_APPROVED)

    consent_id = _first_text(payload, "consent_id", "consentId")
    if consent_id is None:
        raise ExternalServiceError("No consentId/consent_id in response", bank=bank)

    return consent_id, str(payload.get("status") or CONSENT_APPROVED)
