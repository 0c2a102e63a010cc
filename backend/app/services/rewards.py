from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date

from sqlalchemy.orm import Session

from app.services.achievements import AchievementFacts, UnlockedAchievement, check_and_unlock
from app.services.daily_bonus import claim_daily_bonus
from app.services.ledger_store import CreditError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DailyRewardResult:
    success: bool
    error: CreditError | None = None
    bonus_credits: int = 0
    credits_awarded: int = 0
    new_balance: int = 0
    streak: int = 0
    unlocked_achievements: list[UnlockedAchievement] = field(default_factory=list)


def claim_daily_reward(db: Session, user_id: str, today: date | None = None) -> DailyRewardResult:
    """Daily bonus first, then streak achievements.

    A failed bonus aborts the claim. Achievement failures never undo the bonus;
    the claim is still reported as successful with whatever did unlock.
    """
    bonus = claim_daily_bonus(db, user_id, today=today)
    if not bonus.success:
        return DailyRewardResult(
            success=False,
            error=bonus.error,
            new_balance=bonus.new_balance,
            streak=bonus.streak,
        )

    unlocked: list[UnlockedAchievement] = []
    try:
        unlocked = check_and_unlock(db, user_id, AchievementFacts(login_streak=bonus.streak))
    except Exception:
        logger.warning("rewards.daily.achievements_failed user_id=%s streak=%s", user_id, bonus.streak, exc_info=True)

    new_balance = unlocked[-1].new_balance if unlocked else bonus.new_balance
    return DailyRewardResult(
        success=True,
        bonus_credits=bonus.credits_awarded,
        credits_awarded=bonus.credits_awarded + sum(a.reward for a in unlocked),
        new_balance=new_balance,
        streak=bonus.streak,
        unlocked_achievements=unlocked,
    )
