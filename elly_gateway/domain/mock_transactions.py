"""Synthetic monthly series for demo accounts

Only used when ``inject_demo_transactions`` is enabled. A series is skipped
when the real feed already has a merchant with the same key.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import List

from elly_gateway.domain.models import AccountRef, TxRecord
from elly_gateway.domain.obligations import merchant_key_for
from elly_gateway.domain.normalization import normalize_merchant_key
from elly_gateway.utils.date_utils import add_months, as_utc

DEMO_ACCOUNT = AccountRef(bank="vbank", account_id="demo-1")


@dataclass(frozen=True)
class DemoSeries:
    title: str
    description: str
    day: int
    months: int
    amount_minor: int


DEMO_SERIES = [
    DemoSeries("МосЭнергоСбыт", "Оплата электроэнергии", day=5, months=4, amount_minor=-2_500_00),
    DemoSeries("Ростелеком", "Интернет и ТВ", day=12, months=4, amount_minor=-790_00),
    DemoSeries("Аренда ЖК", "Оплата аренды", day=3, months=4, amount_minor=-35_000_00),
]


def monthly_series(series: DemoSeries, start_month: date) -> List[TxRecord]:
    day = min(max(series.day, 1), 28)
    records = []
    for i in range(series.months):
        base = add_months(start_month, i)
        booked = datetime(base.year, base.month, day, 12, 0, tzinfo=timezone.utc)
        records.append(
            TxRecord(
                account=DEMO_ACCOUNT,
                booked_at=booked,
                amount_minor=series.amount_minor,
                description=series.description,
                counterparty=series.title,
            )
        )
    return records


def with_mock_transactions(transactions: List[TxRecord], today: date) -> List[TxRecord]:
    existing_keys = {merchant_key_for(t) for t in transactions}
    start_month = add_months(today, -4)

    mocks: List[TxRecord] = []
    for series in DEMO_SERIES:
        if normalize_merchant_key(series.title) in existing_keys:
            continue
        mocks.extend(monthly_series(series, start_month))

    return sorted(transactions + mocks, key=lambda t: as_utc(t.booked_at))
