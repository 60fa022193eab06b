"""Recurring obligation detection - core business logic for onboarding"""

import hashlib
import re
from collections import Counter, defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from elly_gateway.domain.models import Obligation, Periodicity, TxRecord
from elly_gateway.domain.normalization import normalize_merchant_key
from elly_gateway.utils.date_utils import add_months, as_utc, first_of_next_month

UNKNOWN_MERCHANT = "unknown"
MIN_GROUP_SIZE = 3
MIN_REPEATS = {Periodicity.MONTHLY: 3, Periodicity.WEEKLY: 4}

MONTHLY_GAP_DAYS = (25, 35)
WEEKLY_GAP_DAYS = (5, 9)
MONTHLY_MIN_HITS = 2
WEEKLY_MIN_HITS = 3

# Evaluated in order, first match wins
CATEGORY_PATTERNS: List[Tuple[str, re.Pattern]] = [
    ("loan", re.compile(r"кредит|loan|ипотек|платеж по кредит")),
    ("utility", re.compile(r"жкх|коммун|квартир|водоканал|электр")),
    ("telecom", re.compile(r"интернет|телек(ом)?|связь|мобил")),
    ("subscription", re.compile(r"подписк|subscription|netflix|spotify|icloud|youtube")),
    ("rent", re.compile(r"аренд|rent")),
]
OTHER_CATEGORY = "other"


def merchant_key_for(tx: TxRecord) -> str:
    """Grouping key: counterparty, falling back to description, then a sentinel"""
    if tx.counterparty is not None:
        raw = tx.counterparty
    elif tx.description is not None:
        raw = tx.description
    else:
        raw = UNKNOWN_MERCHANT
    return normalize_merchant_key(raw)


def day_gaps(dates: List[date]) -> List[int]:
    return [(b - a).days for a, b in zip(dates, dates[1:])]


def classify_periodicity(gaps: List[int]) -> Optional[Periodicity]:
    """
    Classify recurrence cadence from day gaps between consecutive bookings.

    MONTHLY: at least 2 gaps in [25, 35] days (checked first, wins ties)
    WEEKLY:  at least 3 gaps in [5, 9] days
    """
    monthly_hits = sum(1 for g in gaps if MONTHLY_GAP_DAYS[0] <= g <= MONTHLY_GAP_DAYS[1])
    if monthly_hits >= MONTHLY_MIN_HITS:
        return Periodicity.MONTHLY

    weekly_hits = sum(1 for g in gaps if WEEKLY_GAP_DAYS[0] <= g <= WEEKLY_GAP_DAYS[1])
    if weekly_hits >= WEEKLY_MIN_HITS:
        return Periodicity.WEEKLY

    return None


def average_amount_minor(group: List[TxRecord]) -> int:
    """Mean absolute amount of the last 3 transactions, at least 1, negated"""
    last3 = [abs(t.amount_minor) for t in group[-3:]]
    avg_abs = max(sum(last3) // len(last3), 1)
    return -avg_abs


def next_due_date(
    last: date, periodicity: Periodicity, today: date
) -> Tuple[date, Optional[int]]:
    """
    Project the next due date after the last observed payment.

    Returns:
        (next_due_date, typical_day) - typical_day is None for weekly cadence
    """
    if periodicity == Periodicity.MONTHLY:
        # Clamp to 28 so every month has the day
        safe_day = min(max(last.day, 1), 28)
        candidate = first_of_next_month(last).replace(day=safe_day)
        if candidate < today:
            candidate = add_months(candidate, 1)
        return candidate, safe_day

    candidate = last + timedelta(days=7)
    if candidate < today:
        candidate = candidate + timedelta(days=7)
    return candidate, None


def infer_title(group: List[TxRecord], merchant_key: str) -> str:
    """Most frequent counterparty/description longer than 3 chars"""
    candidates: List[str] = []
    candidates.extend(t.counterparty for t in group if t.counterparty and len(t.counterparty) > 3)
    candidates.extend(t.description for t in group if t.description and len(t.description) > 3)
    candidates.append(merchant_key)

    counts = Counter(c.strip() for c in candidates)
    title, _ = counts.most_common(1)[0]
    return title or merchant_key


def classify_category(group: List[TxRecord], title: str) -> str:
    first_description = group[0].description if group and group[0].description else ""
    text = f"{title} {first_description}".lower()
    for category, pattern in CATEGORY_PATTERNS:
        if pattern.search(text):
            return category
    return OTHER_CATEGORY


def confidence_for(periodicity: Periodicity, repeats: int) -> float:
    """
    Confidence grows with repeat count and is capped.

    MONTHLY: min(0.6 + 0.05 * repeats, 0.9)
    WEEKLY:  min(0.5 + 0.05 * repeats, 0.85)
    """
    if periodicity == Periodicity.MONTHLY:
        value = min(0.6 + 0.05 * repeats, 0.9)
    else:
        value = min(0.5 + 0.05 * repeats, 0.85)
    return round(value, 4)


def obligation_id(user_id: int, merchant_key: str, category: str) -> str:
    """Stable id so reruns overwrite instead of duplicating"""
    digest = hashlib.sha256(f"{user_id}|{merchant_key}|{category}".encode("utf-8")).digest()
    return "oblg_" + digest[:10].hex()


def detect_obligations(
    user_id: int,
    transactions: List[TxRecord],
    today: date,
    source: str = "agg",
    currency: str = "RUB",
    now: datetime | None = None,
) -> List[Obligation]:
    """
    Main entry point: turn raw transactions into recurring obligations.

    Requirements:
    - Only debits (negative amounts) are considered
    - Groups need at least 3 transactions and a monthly/weekly cadence
    - Minimum repeats: 3 monthly, 4 weekly
    - Groups categorized as "other" are not reported
    """
    debits = [t for t in transactions if t.amount_minor < 0]
    if not debits:
        return []

    groups: Dict[str, List[TxRecord]] = defaultdict(list)
    for tx in debits:
        groups[merchant_key_for(tx)].append(tx)

    created_at = now or datetime.now(timezone.utc)
    result: List[Obligation] = []

    for key, raw in groups.items():
        if len(raw) < MIN_GROUP_SIZE:
            continue

        group = sorted(raw, key=lambda t: as_utc(t.booked_at))
        dates = [as_utc(t.booked_at).date() for t in group]

        periodicity = classify_periodicity(day_gaps(dates))
        if periodicity is None:
            continue
        if len(group) < MIN_REPEATS[periodicity]:
            continue

        due, typical_day = next_due_date(dates[-1], periodicity, today)

        title = infer_title(group, key)
        category = classify_category(group, title)
        if category == OTHER_CATEGORY:
            continue

        repeats = len(group)
        result.append(
            Obligation(
                id=obligation_id(user_id, key, category),
                user_id=user_id,
                source=source,
                merchant_key=key,
                title=title,
                category=category,
                currency=currency,
                avg_amount_minor=average_amount_minor(group),
                periodicity=periodicity,
                typical_day=typical_day,
                next_due_date=due,
                repeats=repeats,
                confidence=confidence_for(periodicity, repeats),
                created_at=created_at,
            )
        )

    return result
