from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.settings import settings
from app.models.credit_ledger import LedgerKind
from app.services import ledger_store
from app.services.credits_engine import add_credits
from app.services.ledger_store import CreditError


logger = logging.getLogger(__name__)

WEEKLY_STREAK_LENGTH = 7


@dataclass(frozen=True)
class DailyBonusResult:
    success: bool
    error: CreditError | None = None
    credits_awarded: int = 0
    new_balance: int = 0
    streak: int = 0
    entry_id: int | None = None


def _bonus_tz():
    name = (settings.bonus_timezone or "UTC").strip()
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def current_day(now: datetime | None = None) -> date:
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(_bonus_tz()).date()


def next_streak(current_streak: int, last_bonus_date: date | None, today: date) -> int:
    if last_bonus_date is not None and last_bonus_date == today - timedelta(days=1):
        return int(current_streak or 0) + 1
    return 1


def bonus_amount(streak: int) -> int:
    amount = int(settings.daily_bonus_base)
    if streak > 0 and streak % WEEKLY_STREAK_LENGTH == 0:
        amount += int(settings.weekly_streak_bonus)
    return amount


def claim_daily_bonus(db: Session, user_id: str, today: date | None = None) -> DailyBonusResult:
    """Grant today's login bonus and advance the streak in one transaction.

    The grant is written first and the streak/claim date second, guarded by a
    compare-and-set on the claim date that was read. If the grant fails nothing
    is committed and the day stays claimable. If another claim won the race the
    grant is rolled back.
    """
    today = today or current_day()
    try:
        acct = ledger_store.get_account(db, user_id)
        if acct is None:
            return DailyBonusResult(success=False, error=CreditError.ACCOUNT_NOT_FOUND)

        previous_date = acct.last_bonus_date
        current_streak = int(acct.login_streak or 0)
        balance = int(acct.balance or 0)
        if previous_date == today:
            return DailyBonusResult(
                success=False,
                error=CreditError.ALREADY_CLAIMED_TODAY,
                new_balance=balance,
                streak=current_streak,
            )

        streak = next_streak(current_streak, previous_date, today)
        amount = bonus_amount(streak)
        grant = add_credits(
            db,
            user_id,
            amount,
            LedgerKind.DAILY_BONUS,
            f"Daily login bonus ({streak} day streak)",
            source=f"daily_bonus:{today.isoformat()}",
            commit=False,
        )
        if not grant.success and grant.error != CreditError.DUPLICATE:
            db.rollback()
            logger.warning("daily_bonus.grant_failed user_id=%s error=%s", user_id, grant.error.value)
            return DailyBonusResult(success=False, error=grant.error, new_balance=balance, streak=current_streak)

        # A duplicate day source means another claim for today committed first.
        if not grant.success or not ledger_store.mark_bonus_claimed(db, user_id, previous_date, today, streak):
            db.rollback()
            logger.info("daily_bonus.lost_race user_id=%s day=%s", user_id, today.isoformat())
            winner = ledger_store.get_account(db, user_id)
            return DailyBonusResult(
                success=False,
                error=CreditError.ALREADY_CLAIMED_TODAY,
                new_balance=int(winner.balance or 0) if winner else balance,
                streak=int(winner.login_streak or 0) if winner else current_streak,
            )

        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("daily_bonus.error user_id=%s day=%s", user_id, today.isoformat())
        return DailyBonusResult(success=False, error=CreditError.STORAGE_UNAVAILABLE)

    logger.info(
        "daily_bonus.claimed user_id=%s day=%s streak=%s amount=%s balance=%s",
        user_id,
        today.isoformat(),
        streak,
        amount,
        grant.new_balance,
    )
    return DailyBonusResult(
        success=True,
        credits_awarded=amount,
        new_balance=grant.new_balance,
        streak=streak,
        entry_id=grant.entry_id,
    )
