from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.api.errors import credit_error_to_http
from app.core.database import get_db
from app.core.security import CurrentUser, get_current_user
from app.schemas.credits import (
    AchievementResponse,
    CreditSummaryResponse,
    LedgerEntryResponse,
    LedgerPageResponse,
    ReferralRedeemRequest,
)
from app.services import ledger_store
from app.services.achievements import AchievementFacts, UnlockedAchievement, check_and_unlock, list_achievements
from app.services.credits_engine import redeem_referral
from app.services.daily_bonus import current_day
from app.services.ledger_store import CreditError
from app.services.rewards import claim_daily_reward


router = APIRouter(dependencies=[Depends(get_current_user)])


def _unlocked_out(items: list[UnlockedAchievement]) -> list[dict]:
    return [{"achievementId": a.achievement_id, "reward": a.reward} for a in items]


@router.get("/me/credits", response_model=CreditSummaryResponse)
def my_credits(db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    acct = ledger_store.get_account(db, current_user.id)
    if acct is None:
        raise credit_error_to_http(CreditError.ACCOUNT_NOT_FOUND)
    return CreditSummaryResponse(
        user_id=acct.user_id,
        balance=int(acct.balance or 0),
        total_earned=int(acct.total_earned or 0),
        total_spent=int(acct.total_spent or 0),
        login_streak=int(acct.login_streak or 0),
        total_readings=int(acct.total_readings or 0),
        last_bonus_date=acct.last_bonus_date,
        can_claim_today=not ledger_store.has_claimed_today(db, acct.user_id, current_day()),
    )


@router.get("/me/credits/history", response_model=LedgerPageResponse)
def my_credit_history(
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    limit = max(1, min(int(limit or 50), 200))
    offset = max(0, int(offset or 0))
    rows, total = ledger_store.list_entries(db, user_id=current_user.id, limit=limit, offset=offset)
    return LedgerPageResponse(
        items=[LedgerEntryResponse.model_validate(r) for r in rows],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/me/achievements", response_model=list[AchievementResponse])
def my_achievements(db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    return [AchievementResponse.model_validate(u) for u in list_achievements(db, current_user.id)]


@router.post("/me/achievements/share")
def share_reading(db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)) -> dict:
    unlocked = check_and_unlock(db, current_user.id, AchievementFacts(shared_reading=True))
    return {"success": True, "unlockedAchievements": _unlocked_out(unlocked)}


@router.post("/me/daily-bonus")
def claim_daily_bonus(db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)) -> dict:
    result = claim_daily_reward(db, current_user.id)
    if not result.success:
        raise credit_error_to_http(result.error)
    return {
        "success": True,
        "creditsAwarded": result.credits_awarded,
        "bonusCredits": result.bonus_credits,
        "newBalance": result.new_balance,
        "streak": result.streak,
        "unlockedAchievements": _unlocked_out(result.unlocked_achievements),
    }


@router.post("/me/referral/redeem")
def redeem_referral_code(
    body: ReferralRedeemRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> dict:
    referrer_id = (body.referrer_id or "").strip()
    if not referrer_id:
        raise HTTPException(status_code=400, detail="Invalid referral code")
    if referrer_id == current_user.id:
        raise HTTPException(status_code=400, detail="Cannot use your own referral code")

    result = redeem_referral(db, current_user.id, referrer_id)
    if result.error == CreditError.ACCOUNT_NOT_FOUND:
        raise HTTPException(status_code=404, detail="Invalid referral code")
    if result.error == CreditError.DUPLICATE:
        raise HTTPException(status_code=409, detail="You have already redeemed a referral code")
    if not result.success:
        raise credit_error_to_http(result.error)
    return {"success": True, "creditsAwarded": result.credits_awarded, "newBalance": result.new_balance}
