"""Pytest fixtures for testing"""

from datetime import date, datetime, timedelta, timezone
from typing import Callable, Dict, Generator, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from elly_gateway.api.main import create_app
from elly_gateway.domain.exceptions import ConfigurationError, ExternalServiceError
from elly_gateway.domain.models import AccountRef, AccountsConsent, TxRecord
from elly_gateway.infrastructure.database.models import Base, UserRow
from elly_gateway.infrastructure.database.session import get_db
from elly_gateway.infrastructure.database.store import OnboardingStore
from elly_gateway.infrastructure.events import ProgressPublisher

TEST_USER_ID = 42
TEST_USER_EMAIL = "Ivan.Petrov@example.com"


@pytest.fixture
def session_factory(tmp_path) -> Generator[sessionmaker, None, None]:
    """Fresh SQLite database per test"""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def db(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """Create test database session"""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def user(db: Session) -> UserRow:
    row = UserRow(id=TEST_USER_ID, email=TEST_USER_EMAIL)
    db.add(row)
    db.commit()
    return row


@pytest.fixture
def store(session_factory: sessionmaker) -> OnboardingStore:
    return OnboardingStore(session_factory)


@pytest.fixture
def publisher() -> ProgressPublisher:
    return ProgressPublisher(replay_size=32)


@pytest.fixture
def client(db: Session) -> TestClient:
    """Create FastAPI test client with test database"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


@pytest.fixture
def make_tx() -> Callable[..., TxRecord]:
    """Build a debit/credit record booked at noon UTC on the given date"""

    def _make(
        booked: date,
        amount_minor: int,
        counterparty: Optional[str] = None,
        description: Optional[str] = None,
        bank: str = "vbank",
    ) -> TxRecord:
        return TxRecord(
            account=AccountRef(bank=bank, account_id=f"{bank}-acc-1"),
            booked_at=datetime(booked.year, booked.month, booked.day, 12, 0, tzinfo=timezone.utc),
            amount_minor=amount_minor,
            description=description,
            counterparty=counterparty,
        )

    return _make


class FakeBankClient:
    """In-memory stand-in for OpenBankClient with per-bank behaviour"""

    def __init__(
        self,
        transactions: Dict[str, List[TxRecord]] | None = None,
        consent_status: Dict[str, str] | None = None,
        failing_accounts: set[str] | None = None,
        failing_consents: set[str] | None = None,
        known_banks: set[str] | None = None,
    ):
        self.transactions = transactions or {}
        self.consent_status = consent_status or {}
        self.failing_accounts = failing_accounts or set()
        self.failing_consents = failing_consents or set()
        self.known_banks = known_banks
        self.consent_calls: List[str] = []
        self.transaction_calls: List[AccountRef] = []

    def base_url(self, bank: str) -> str:
        if self.known_banks is not None and bank not in self.known_banks:
            raise ConfigurationError(f"No baseUrl configured for bank='{bank}'")
        return f"https://{bank}.example.test"

    async def ensure_accounts_consent(self, bank: str, client_id: str, user_id: int) -> AccountsConsent:
        self.consent_calls.append(bank)
        if bank in self.failing_consents:
            raise ExternalServiceError("Consent request failed: 500", bank=bank, status_code=500)
        return AccountsConsent(
            user_id=user_id,
            bank=bank,
            client_id=client_id,
            consent_id=f"consent-{bank}",
            status=self.consent_status.get(bank, "approved"),
            created_at=datetime.now(timezone.utc),
        )

    async def list_accounts(self, bank: str, client_id: str, consent_id: str) -> List[AccountRef]:
        if bank in self.failing_accounts:
            raise ExternalServiceError("Bank API error: 503 (accounts)", bank=bank, status_code=503)
        return [AccountRef(bank=bank, account_id=f"{bank}-acc-1")]

    async def list_transactions(
        self, account: AccountRef, from_iso: str, to_iso: str, consent_id: str
    ) -> List[TxRecord]:
        self.transaction_calls.append(account)
        return list(self.transactions.get(account.bank, []))


@pytest.fixture
def monthly_series(make_tx) -> Callable[..., List[TxRecord]]:
    """Monthly debits on a fixed day for the last ``months`` months"""

    def _series(
        counterparty: str,
        description: str,
        amount_minor: int,
        day: int,
        months: int,
        today: date,
        bank: str = "vbank",
    ) -> List[TxRecord]:
        records = []
        for i in range(months, 0, -1):
            month_index = today.month - 1 - i
            year, month = today.year + month_index // 12, month_index % 12 + 1
            records.append(make_tx(date(year, month, day), amount_minor, counterparty, description, bank))
        return records

    return _series


@pytest.fixture
def sample_transactions(monthly_series, make_tx) -> List[TxRecord]:
    """Telecom bills, rent, and noisy one-off spending"""
    today = date.today()
    transactions = monthly_series("Ростелеком", "Интернет и ТВ", -79_000, 12, 4, today)
    transactions += monthly_series("Аренда ЖК", "Оплата аренды", -3_500_000, 3, 3, today)

    # Irregular grocery spending
    for offset in (2, 9, 23, 51, 60):
        transactions.append(make_tx(today - timedelta(days=offset), -150_000, "Supermarket", "Groceries"))

    # Salary credit
    transactions.append(make_tx(today - timedelta(days=20), 12_000_000, "Employer", "Зарплата"))
    return transactions


@pytest.fixture
def bank_factory() -> Callable[..., FakeBankClient]:
    return FakeBankClient
