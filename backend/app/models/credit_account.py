from sqlalchemy import CheckConstraint, Column, Date, DateTime, Integer, String
from sqlalchemy.sql import func

from app.core.database import Base


class CreditAccount(Base):
    __tablename__ = "credit_accounts"
    __table_args__ = (CheckConstraint("balance >= 0", name="ck_credit_accounts_balance_non_negative"),)

    user_id = Column(String, primary_key=True, index=True)
    balance = Column(Integer, nullable=False, default=0)
    total_earned = Column(Integer, nullable=False, default=0)
    total_spent = Column(Integer, nullable=False, default=0)
    login_streak = Column(Integer, nullable=False, default=0)
    last_bonus_date = Column(Date, nullable=True)
    total_readings = Column(Integer, nullable=False, default=0)
    referred_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
