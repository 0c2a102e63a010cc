"""Persistence primitives for credit accounts, ledger entries and achievement unlocks.

Apart from ``get_or_create_account``, nothing here commits or rolls back.
Callers own the unit of work: they commit after a successful write and roll
back otherwise. Storage errors (``SQLAlchemyError``) propagate unchanged.

Balance changes go through ``append_and_adjust_balance`` only. It is a
compare-and-set ``UPDATE`` whose ``WHERE`` clause carries the non-negativity
check, so the database evaluates it against the latest committed row while
holding the row (PostgreSQL) or database (SQLite) write lock. Two concurrent
debits therefore cannot both pass against a stale balance.

Ledger entries with a ``source`` are unique per user. Inserts that may collide
use ``INSERT ... ON CONFLICT DO NOTHING`` so a duplicate is reported as a value
and never aborts the caller's transaction.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date
from typing import Any

from sqlalchemy import distinct, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.achievement_unlock import AchievementUnlock
from app.models.credit_account import CreditAccount
from app.models.credit_ledger import CreditLedger, LedgerKind
from app.models.reading import Reading


_CONFLICT_INSERTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


class CreditError(str, enum.Enum):
    INSUFFICIENT_BALANCE = "insufficient_balance"
    ALREADY_CLAIMED_TODAY = "already_claimed_today"
    INVALID_AMOUNT = "invalid_amount"
    STORAGE_UNAVAILABLE = "storage_unavailable"
    ACCOUNT_NOT_FOUND = "account_not_found"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class LedgerWrite:
    new_balance: int = 0
    entry_id: int | None = None
    error: CreditError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def get_account(db: Session, user_id: str) -> CreditAccount | None:
    return (
        db.query(CreditAccount)
        .populate_existing()
        .filter(CreditAccount.user_id == user_id)
        .first()
    )


def get_or_create_account(db: Session, user_id: str) -> CreditAccount:
    acct = get_account(db, user_id)
    if acct is not None:
        return acct
    acct = CreditAccount(user_id=user_id, balance=0, total_earned=0, total_spent=0, login_streak=0, total_readings=0)
    db.add(acct)
    try:
        db.commit()
    except IntegrityError:
        # Another request created it first.
        db.rollback()
        return db.query(CreditAccount).filter(CreditAccount.user_id == user_id).one()
    db.refresh(acct)
    return acct


def _current_balance(db: Session, user_id: str) -> int | None:
    row = db.execute(select(CreditAccount.balance).where(CreditAccount.user_id == user_id)).first()
    if row is None:
        return None
    return int(row[0] or 0)


def _insert_if_absent(db: Session, model: Any, conflict_columns: list[str], values: dict[str, Any]) -> int | None:
    """Insert one row; its id, or ``None`` when the unique key already exists."""
    dialect = db.get_bind().dialect.name
    insert = _CONFLICT_INSERTS.get(dialect)
    if insert is None:
        raise RuntimeError(f"Unsupported database dialect: {dialect}")
    table = model.__table__
    stmt = (
        insert(table)
        .values(**values)
        .on_conflict_do_nothing(index_elements=conflict_columns)
        .returning(table.c.id)
    )
    return db.execute(stmt).scalar_one_or_none()


def _balance_values(amount: int, sign: int = 1) -> dict[str, Any]:
    delta = sign * amount
    values: dict[str, Any] = {"balance": CreditAccount.balance + delta}
    if amount > 0:
        values["total_earned"] = CreditAccount.total_earned + delta
    else:
        values["total_spent"] = CreditAccount.total_spent - delta
    return values


def append_and_adjust_balance(
    db: Session,
    user_id: str,
    amount: int,
    kind: LedgerKind | str,
    description: str,
    source: str | None = None,
) -> LedgerWrite:
    amount = int(amount)
    if amount == 0:
        return LedgerWrite(error=CreditError.INVALID_AMOUNT)
    kind = LedgerKind(kind)

    result = db.execute(
        update(CreditAccount)
        .where(CreditAccount.user_id == user_id, CreditAccount.balance + amount >= 0)
        .values(_balance_values(amount))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        balance = _current_balance(db, user_id)
        if balance is None:
            return LedgerWrite(error=CreditError.ACCOUNT_NOT_FOUND)
        if source is not None and find_entry_by_source(db, user_id, source) is not None:
            return LedgerWrite(new_balance=balance, error=CreditError.DUPLICATE)
        return LedgerWrite(new_balance=balance, error=CreditError.INSUFFICIENT_BALANCE)

    entry_id = _insert_if_absent(
        db,
        CreditLedger,
        ["user_id", "source"],
        {
            "user_id": user_id,
            "kind": kind.value,
            "amount": amount,
            "description": description,
            "source": source,
        },
    )
    if entry_id is None:
        # The source is already booked; take this call's balance change back out.
        db.execute(
            update(CreditAccount)
            .where(CreditAccount.user_id == user_id)
            .values(_balance_values(amount, sign=-1))
            .execution_options(synchronize_session=False)
        )
        return LedgerWrite(new_balance=int(_current_balance(db, user_id) or 0), error=CreditError.DUPLICATE)
    return LedgerWrite(new_balance=int(_current_balance(db, user_id) or 0), entry_id=entry_id)


def has_claimed_today(db: Session, user_id: str, today: date) -> bool:
    last = db.execute(
        select(CreditAccount.last_bonus_date).where(CreditAccount.user_id == user_id)
    ).scalar_one_or_none()
    return last == today


def mark_bonus_claimed(
    db: Session,
    user_id: str,
    previous_date: date | None,
    today: date,
    streak: int,
) -> bool:
    """Advance streak and claim date, provided nobody claimed since ``previous_date`` was read."""
    if previous_date is None:
        unchanged = CreditAccount.last_bonus_date.is_(None)
    else:
        unchanged = CreditAccount.last_bonus_date == previous_date
    result = db.execute(
        update(CreditAccount)
        .where(CreditAccount.user_id == user_id, unchanged)
        .values(login_streak=int(streak), last_bonus_date=today)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def mark_referred(db: Session, user_id: str, referrer_id: str) -> bool:
    """Set ``referred_by`` once; ``False`` if the account was already referred."""
    result = db.execute(
        update(CreditAccount)
        .where(CreditAccount.user_id == user_id, CreditAccount.referred_by.is_(None))
        .values(referred_by=referrer_id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def record_reading(
    db: Session,
    user_id: str,
    spread_type: str,
    credits_spent: int,
    ledger_entry_id: int | None,
) -> tuple[int, int]:
    """Store the reading and bump the account's counter; returns (reading id, total readings)."""
    reading = Reading(
        user_id=user_id,
        spread_type=spread_type,
        credits_spent=int(credits_spent),
        ledger_entry_id=ledger_entry_id,
    )
    db.add(reading)
    db.flush()
    db.execute(
        update(CreditAccount)
        .where(CreditAccount.user_id == user_id)
        .values(total_readings=CreditAccount.total_readings + 1)
        .execution_options(synchronize_session=False)
    )
    total = db.execute(
        select(CreditAccount.total_readings).where(CreditAccount.user_id == user_id)
    ).scalar_one()
    return reading.id, int(total or 0)


def get_reading(db: Session, reading_id: int) -> Reading | None:
    return db.get(Reading, reading_id)


def spread_types_used(db: Session, user_id: str) -> frozenset[str]:
    rows = db.execute(select(distinct(Reading.spread_type)).where(Reading.user_id == user_id)).all()
    return frozenset(str(r[0]) for r in rows)


def record_achievement_if_absent(db: Session, user_id: str, achievement_id: str) -> bool:
    """Insert the unlock row; ``False`` if the user already has it."""
    unlock_id = _insert_if_absent(
        db,
        AchievementUnlock,
        ["user_id", "achievement_id"],
        {"user_id": user_id, "achievement_id": achievement_id},
    )
    return unlock_id is not None


def list_unlocks(db: Session, user_id: str) -> list[AchievementUnlock]:
    return (
        db.query(AchievementUnlock)
        .filter(AchievementUnlock.user_id == user_id)
        .order_by(AchievementUnlock.id.asc())
        .all()
    )


def list_entries(
    db: Session,
    user_id: str | None = None,
    kind: LedgerKind | str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[CreditLedger], int]:
    q = db.query(CreditLedger)
    if user_id is not None:
        q = q.filter(CreditLedger.user_id == user_id)
    if kind is not None:
        q = q.filter(CreditLedger.kind == LedgerKind(kind).value)
    total = int(q.count())
    rows = q.order_by(CreditLedger.id.desc()).offset(offset).limit(limit).all()
    return rows, total


def ledger_sum(db: Session, user_id: str) -> int:
    total = (
        db.query(func.coalesce(func.sum(CreditLedger.amount), 0))
        .filter(CreditLedger.user_id == user_id)
        .scalar()
    )
    return int(total or 0)


def find_entry_by_source(db: Session, user_id: str, source: str) -> CreditLedger | None:
    return (
        db.query(CreditLedger)
        .filter(CreditLedger.user_id == user_id, CreditLedger.source == source)
        .first()
    )
