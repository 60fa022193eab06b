"""SQLAlchemy ORM models for users, onboarding jobs, consents and obligations"""

from sqlalchemy import BigInteger, Column, Date, DateTime, Float, Integer, JSON, String, Text
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class UserRow(Base):
    """Registered user (only the fields onboarding needs)"""

    __tablename__ = "users"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    email = Column(Text, nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class OnboardingJobRow(Base):
    """Latest snapshot of an onboarding run"""

    __tablename__ = "onboarding_jobs"

    job_id = Column(String(64), primary_key=True)
    user_id = Column(BigInteger, nullable=False, index=True)
    phase = Column(String(32), nullable=False)
    progress = Column(Integer, nullable=False, default=0)
    per_bank = Column(JSON, nullable=False, default=dict)
    obligations_detected = Column(Integer, nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class AccountsConsentRow(Base):
    """Accounts consent per (user, bank)"""

    __tablename__ = "accounts_consents"

    user_id = Column(BigInteger, primary_key=True)
    bank = Column(String(32), primary_key=True)
    client_id = Column(Text, nullable=False)
    consent_id = Column(Text, nullable=False)
    status = Column(String(32), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class ObligationRow(Base):
    """Detected obligation, keyed by deterministic hash id"""

    __tablename__ = "obligations"

    id = Column(String(64), primary_key=True)
    user_id = Column(BigInteger, nullable=False, index=True)
    source = Column(String(32), nullable=False)
    merchant_key = Column(Text, nullable=False)
    title = Column(Text, nullable=False)
    category = Column(String(32), nullable=False)  # loan|utility|telecom|subscription|rent
    currency = Column(String(3), nullable=False)
    avg_amount_minor = Column(BigInteger, nullable=False)  # negative
    periodicity = Column(String(16), nullable=False)  # MONTHLY|WEEKLY
    typical_day = Column(Integer, nullable=True)
    next_due_date = Column(Date, nullable=False)
    repeats = Column(Integer, nullable=False)
    confidence = Column(Float, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
