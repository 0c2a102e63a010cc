from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel


class CreditSummaryResponse(BaseModel):
    user_id: str
    balance: int
    total_earned: int
    total_spent: int
    login_streak: int
    total_readings: int = 0
    last_bonus_date: Optional[date] = None
    can_claim_today: bool


class LedgerEntryResponse(BaseModel):
    id: int
    user_id: str
    kind: str
    amount: int
    description: Optional[str] = None
    source: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class LedgerPageResponse(BaseModel):
    items: List[LedgerEntryResponse]
    total: int
    limit: int
    offset: int


class AchievementResponse(BaseModel):
    achievement_id: str
    unlocked_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CreditAdjustRequest(BaseModel):
    amount: int
    reason: str = ""


class ReconciliationResponse(BaseModel):
    user_id: str
    balance: int
    ledger_sum: int
    total_earned: int
    total_spent: int
    ok: bool


class PaymentEvent(BaseModel):
    event: str
    provider: str
    payment_id: str
    user_id: str
    credits: int = 0


class ReadingRequest(BaseModel):
    spread_type: str
    has_advanced_style: bool = False
    has_extended_question: bool = False


class ReferralRedeemRequest(BaseModel):
    referrer_id: str


class ReadingRefundRequest(BaseModel):
    reason: str = ""
