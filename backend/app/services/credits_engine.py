from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.settings import settings
from app.models.credit_account import CreditAccount
from app.models.credit_ledger import LedgerKind
from app.services import ledger_store
from app.services.costs import FOLLOW_UP_COST
from app.services.ledger_store import CreditError


logger = logging.getLogger(__name__)

PAYMENT_PROVIDERS = {"stripe", "stripe_link", "paypal"}


@dataclass(frozen=True)
class CreditResult:
    success: bool
    new_balance: int = 0
    entry_id: int | None = None
    error: CreditError | None = None


@dataclass(frozen=True)
class ReconciliationReport:
    user_id: str
    balance: int
    ledger_sum: int
    total_earned: int
    total_spent: int

    @property
    def ok(self) -> bool:
        return self.balance == self.ledger_sum == self.total_earned - self.total_spent


@dataclass(frozen=True)
class ReferralResult:
    success: bool
    error: CreditError | None = None
    credits_awarded: int = 0
    new_balance: int = 0
    referrer_balance: int = 0


def get_or_create_credit_account(db: Session, user_id: str) -> CreditAccount:
    return ledger_store.get_or_create_account(db, user_id)


def get_balance(db: Session, user_id: str) -> int | None:
    acct = ledger_store.get_account(db, user_id)
    if acct is None:
        return None
    return int(acct.balance or 0)


def _apply(
    db: Session,
    *,
    op: str,
    user_id: str,
    amount: int,
    kind: LedgerKind | str,
    description: str,
    source: str | None,
    commit: bool,
) -> CreditResult:
    try:
        write = ledger_store.append_and_adjust_balance(
            db,
            user_id=user_id,
            amount=amount,
            kind=kind,
            description=description,
            source=source,
        )
        if not write.ok:
            if commit:
                db.rollback()
            logger.info(
                "credits.%s.rejected user_id=%s amount=%s kind=%s error=%s",
                op,
                user_id,
                abs(amount),
                LedgerKind(kind).value,
                write.error.value,
            )
            return CreditResult(success=False, new_balance=write.new_balance, error=write.error)
        if commit:
            db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("credits.%s.error user_id=%s amount=%s kind=%s", op, user_id, abs(amount), LedgerKind(kind).value)
        return CreditResult(success=False, error=CreditError.STORAGE_UNAVAILABLE)

    logger.info(
        "credits.%s.ok user_id=%s amount=%s kind=%s entry_id=%s balance=%s",
        op,
        user_id,
        abs(amount),
        LedgerKind(kind).value,
        write.entry_id,
        write.new_balance,
    )
    return CreditResult(success=True, new_balance=write.new_balance, entry_id=write.entry_id)


def add_credits(
    db: Session,
    user_id: str,
    amount: int,
    kind: LedgerKind | str,
    description: str,
    *,
    source: str | None = None,
    commit: bool = True,
) -> CreditResult:
    """Grant ``amount`` credits as one ledger entry.

    With ``commit=False`` the write joins the caller's transaction and the
    caller decides whether to commit it.
    """
    amount = int(amount)
    if amount <= 0:
        return CreditResult(success=False, error=CreditError.INVALID_AMOUNT)
    return _apply(
        db,
        op="add",
        user_id=user_id,
        amount=amount,
        kind=kind,
        description=description,
        source=source,
        commit=commit,
    )


def deduct_credits(
    db: Session,
    user_id: str,
    amount: int,
    kind: LedgerKind | str,
    description: str,
    *,
    source: str | None = None,
    commit: bool = True,
) -> CreditResult:
    """Spend ``amount`` credits; all or nothing."""
    amount = int(amount)
    if amount <= 0:
        return CreditResult(success=False, error=CreditError.INVALID_AMOUNT)
    return _apply(
        db,
        op="deduct",
        user_id=user_id,
        amount=-amount,
        kind=kind,
        description=description,
        source=source,
        commit=commit,
    )


def adjust_credits(db: Session, user_id: str, amount: int, reason: str) -> CreditResult:
    amount = int(amount)
    description = f"Admin adjustment: {(reason or '').strip()}".strip()
    if amount > 0:
        return add_credits(db, user_id, amount, LedgerKind.ADMIN_ADJUSTMENT, description)
    if amount < 0:
        return deduct_credits(db, user_id, -amount, LedgerKind.ADMIN_ADJUSTMENT, description)
    return CreditResult(success=False, new_balance=int(get_balance(db, user_id) or 0), error=CreditError.INVALID_AMOUNT)


def grant_purchase(db: Session, user_id: str, credits: int, provider: str, payment_id: str) -> CreditResult:
    return add_credits(
        db,
        user_id,
        credits,
        LedgerKind.PURCHASE,
        f"Credit purchase via {provider}",
        source=payment_source(provider, payment_id),
    )


def process_payment_refund(db: Session, user_id: str, provider: str, payment_id: str) -> CreditResult | None:
    """Take back the credits of a refunded purchase.

    ``None`` when this ledger never granted that payment. The debit is the
    purchased amount, whatever the refund notification claims.
    """
    purchase = ledger_store.find_entry_by_source(db, user_id, payment_source(provider, payment_id))
    if purchase is None or purchase.kind != LedgerKind.PURCHASE.value:
        logger.info("credits.payment_refund.unknown user_id=%s provider=%s payment_id=%s", user_id, provider, payment_id)
        return None
    return deduct_credits(
        db,
        user_id,
        int(purchase.amount),
        LedgerKind.REFUND,
        f"Refund processed via {provider}",
        source=payment_refund_source(provider, payment_id),
    )


def refund_credits(db: Session, user_id: str, amount: int, reason: str, original_entry_id: int | None = None) -> CreditResult:
    source = f"ledger:{original_entry_id}" if original_entry_id is not None else None
    return add_credits(db, user_id, amount, LedgerKind.REFUND, f"Refund: {reason}", source=source)


def redeem_referral(db: Session, user_id: str, referrer_id: str) -> ReferralResult:
    """Pay the referral bonus to both accounts, once per referred user.

    The ``referred_by`` compare-and-set and both grants commit together; if
    any of them fails nothing is written.
    """
    if user_id == referrer_id:
        raise ValueError("an account cannot refer itself")
    bonus = int(settings.referral_bonus)
    try:
        if ledger_store.get_account(db, user_id) is None or ledger_store.get_account(db, referrer_id) is None:
            return ReferralResult(success=False, error=CreditError.ACCOUNT_NOT_FOUND)
        if not ledger_store.mark_referred(db, user_id, referrer_id):
            db.rollback()
            return ReferralResult(success=False, error=CreditError.DUPLICATE)

        referee = add_credits(
            db,
            user_id,
            bonus,
            LedgerKind.REFERRAL_BONUS,
            f"Referral bonus: joined via {referrer_id}",
            source="referral:redeemed",
            commit=False,
        )
        if not referee.success:
            db.rollback()
            return ReferralResult(success=False, error=referee.error)
        referrer = add_credits(
            db,
            referrer_id,
            bonus,
            LedgerKind.REFERRAL_BONUS,
            f"Referral bonus: {user_id} joined",
            source=f"referral:{user_id}",
            commit=False,
        )
        if not referrer.success:
            db.rollback()
            return ReferralResult(success=False, error=referrer.error)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("credits.referral.error user_id=%s referrer_id=%s", user_id, referrer_id)
        return ReferralResult(success=False, error=CreditError.STORAGE_UNAVAILABLE)

    logger.info("credits.referral.ok user_id=%s referrer_id=%s amount=%s", user_id, referrer_id, bonus)
    return ReferralResult(
        success=True,
        credits_awarded=bonus,
        new_balance=referee.new_balance,
        referrer_balance=referrer.new_balance,
    )


def charge_follow_up(db: Session, user_id: str, reading_id: int) -> CreditResult:
    return deduct_credits(db, user_id, FOLLOW_UP_COST, LedgerKind.FOLLOWUP_QUESTION, f"Follow-up question on reading {reading_id}")


def payment_source(provider: str, payment_id: str) -> str:
    return f"{provider}:{payment_id}"


def payment_refund_source(provider: str, payment_id: str) -> str:
    return f"{provider}:{payment_id}:refund"


def reconcile_account(db: Session, user_id: str) -> ReconciliationReport | None:
    acct = ledger_store.get_account(db, user_id)
    if acct is None:
        return None
    report = ReconciliationReport(
        user_id=user_id,
        balance=int(acct.balance or 0),
        ledger_sum=ledger_store.ledger_sum(db, user_id),
        total_earned=int(acct.total_earned or 0),
        total_spent=int(acct.total_spent or 0),
    )
    if not report.ok:
        logger.error(
            "credits.reconcile.mismatch user_id=%s balance=%s ledger_sum=%s earned=%s spent=%s",
            user_id,
            report.balance,
            report.ledger_sum,
            report.total_earned,
            report.total_spent,
        )
    return report
