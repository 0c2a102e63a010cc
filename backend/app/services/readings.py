from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.credit_ledger import LedgerKind
from app.services import ledger_store
from app.services.achievements import AchievementFacts, UnlockedAchievement, check_and_unlock
from app.services.costs import calculate_reading_cost, normalize_spread_type
from app.services.credits_engine import deduct_credits
from app.services.ledger_store import CreditError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReadingResult:
    success: bool
    error: CreditError | None = None
    reading_id: int | None = None
    credits_spent: int = 0
    new_balance: int = 0
    total_readings: int = 0
    unlocked_achievements: list[UnlockedAchievement] = field(default_factory=list)


def complete_reading(
    db: Session,
    user_id: str,
    spread_type: str,
    *,
    has_advanced_style: bool = False,
    has_extended_question: bool = False,
) -> ReadingResult:
    """Charge for a reading, record it, then run the reading achievements.

    The charge, the reading row and the reading counter commit together. An
    achievement failure is logged and never fails the reading.
    """
    spread = normalize_spread_type(spread_type)
    cost = calculate_reading_cost(
        spread_type=spread,
        has_advanced_style=has_advanced_style,
        has_extended_question=has_extended_question,
    )["total_cost"]
    try:
        charge = deduct_credits(db, user_id, cost, LedgerKind.READING, f"Reading: {spread}", commit=False)
        if not charge.success:
            db.rollback()
            return ReadingResult(success=False, error=charge.error, new_balance=charge.new_balance)
        reading_id, total_readings = ledger_store.record_reading(db, user_id, spread, cost, charge.entry_id)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("readings.complete.error user_id=%s spread_type=%s", user_id, spread)
        return ReadingResult(success=False, error=CreditError.STORAGE_UNAVAILABLE)

    logger.info(
        "readings.complete.ok user_id=%s reading_id=%s spread_type=%s cost=%s total_readings=%s",
        user_id,
        reading_id,
        spread,
        cost,
        total_readings,
    )

    unlocked: list[UnlockedAchievement] = []
    try:
        facts = AchievementFacts(
            total_readings=total_readings,
            spread_type=spread,
            spread_types_used=ledger_store.spread_types_used(db, user_id),
        )
        unlocked = check_and_unlock(db, user_id, facts)
    except Exception:
        db.rollback()
        logger.warning("readings.complete.achievements_failed user_id=%s reading_id=%s", user_id, reading_id, exc_info=True)

    return ReadingResult(
        success=True,
        reading_id=reading_id,
        credits_spent=cost,
        new_balance=unlocked[-1].new_balance if unlocked else charge.new_balance,
        total_readings=total_readings,
        unlocked_achievements=unlocked,
    )
