import enum

from sqlalchemy import CheckConstraint, Column, DateTime, Index, Integer, String, Text
from sqlalchemy.sql import func

from app.core.database import Base


class LedgerKind(str, enum.Enum):
    PURCHASE = "PURCHASE"
    READING = "READING"
    FOLLOWUP_QUESTION = "FOLLOWUP_QUESTION"
    DAILY_BONUS = "DAILY_BONUS"
    STREAK_BONUS = "STREAK_BONUS"
    ACHIEVEMENT = "ACHIEVEMENT"
    REFERRAL_BONUS = "REFERRAL_BONUS"
    REFUND = "REFUND"
    ADMIN_ADJUSTMENT = "ADMIN_ADJUSTMENT"


class CreditLedger(Base):
    """Append-only credit movement. Rows are never updated or deleted."""

    __tablename__ = "credit_ledger"
    __table_args__ = (
        CheckConstraint("amount <> 0", name="ck_credit_ledger_amount_non_zero"),
        # One movement per (user, source); NULL sources never collide.
        Index("uq_credit_ledger_user_source", "user_id", "source", unique=True),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    kind = Column(String, index=True, nullable=False)
    amount = Column(Integer, nullable=False)
    description = Column(Text, nullable=True)
    source = Column(String, index=True, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
