from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.achievement_unlock import AchievementUnlock
from app.models.credit_ledger import LedgerKind
from app.services import ledger_store
from app.services.costs import normalize_spread_type
from app.services.credits_engine import add_credits


logger = logging.getLogger(__name__)

ALL_SPREAD_TYPES: frozenset[str] = frozenset(
    {"SINGLE", "THREE_CARD", "LOVE", "CAREER", "HORSESHOE", "CELTIC_CROSS"}
)


@dataclass(frozen=True)
class AchievementFacts:
    total_readings: int | None = None
    spread_type: str | None = None
    spread_types_used: frozenset[str] = field(default_factory=frozenset)
    login_streak: int | None = None
    shared_reading: bool = False

    def spreads_seen(self) -> set[str]:
        seen = {normalize_spread_type(s) for s in self.spread_types_used}
        if self.spread_type:
            seen.add(normalize_spread_type(self.spread_type))
        return seen


@dataclass(frozen=True)
class AchievementRule:
    achievement_id: str
    reward: int
    matches: Callable[[AchievementFacts], bool]


@dataclass(frozen=True)
class UnlockedAchievement:
    achievement_id: str
    reward: int
    new_balance: int


ACHIEVEMENT_RULES: tuple[AchievementRule, ...] = (
    AchievementRule("first_reading", 3, lambda f: (f.total_readings or 0) >= 1),
    AchievementRule("five_readings", 5, lambda f: (f.total_readings or 0) >= 5),
    AchievementRule("ten_readings", 10, lambda f: (f.total_readings or 0) >= 10),
    AchievementRule(
        "celtic_master",
        5,
        lambda f: normalize_spread_type(f.spread_type or "") == "CELTIC_CROSS",
    ),
    AchievementRule("all_spreads", 10, lambda f: bool(f.spread_type) and ALL_SPREAD_TYPES <= f.spreads_seen()),
    AchievementRule("week_streak", 10, lambda f: (f.login_streak or 0) >= 7),
    AchievementRule("share_reading", 3, lambda f: bool(f.shared_reading)),
)


def unlock_achievement(db: Session, user_id: str, rule: AchievementRule) -> UnlockedAchievement | None:
    """Record the unlock and pay its reward as one unit of work, committed here.

    ``None`` when the user already had it, or when the reward could not be
    granted (the unlock is rolled back with it, so it can fire again later).
    """
    if not ledger_store.record_achievement_if_absent(db, user_id, rule.achievement_id):
        db.rollback()
        return None
    grant = add_credits(
        db,
        user_id,
        rule.reward,
        LedgerKind.ACHIEVEMENT,
        f"Achievement unlocked: {rule.achievement_id}",
        source=f"achievement:{rule.achievement_id}",
        commit=False,
    )
    if not grant.success:
        db.rollback()
        logger.warning(
            "achievements.unlock.grant_failed user_id=%s achievement_id=%s error=%s",
            user_id,
            rule.achievement_id,
            grant.error.value,
        )
        return None
    db.commit()
    logger.info(
        "achievements.unlock.ok user_id=%s achievement_id=%s reward=%s",
        user_id,
        rule.achievement_id,
        rule.reward,
    )
    return UnlockedAchievement(achievement_id=rule.achievement_id, reward=rule.reward, new_balance=grant.new_balance)


def check_and_unlock(
    db: Session,
    user_id: str,
    facts: AchievementFacts,
    rules: tuple[AchievementRule, ...] = ACHIEVEMENT_RULES,
) -> list[UnlockedAchievement]:
    unlocked: list[UnlockedAchievement] = []
    for rule in rules:
        if not rule.matches(facts):
            continue
        try:
            result = unlock_achievement(db, user_id, rule)
        except SQLAlchemyError:
            db.rollback()
            logger.warning(
                "achievements.unlock.error user_id=%s achievement_id=%s",
                user_id,
                rule.achievement_id,
                exc_info=True,
            )
            continue
        if result is not None:
            unlocked.append(result)
    return unlocked


def list_achievements(db: Session, user_id: str) -> list[AchievementUnlock]:
    return ledger_store.list_unlocks(db, user_id)
