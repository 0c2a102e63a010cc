from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.api.errors import credit_error_to_http
from app.core.database import get_db
from app.core.security import CurrentUser, require_admin
from app.models.credit_ledger import LedgerKind
from app.schemas.credits import (
    CreditAdjustRequest,
    LedgerEntryResponse,
    LedgerPageResponse,
    ReadingRefundRequest,
    ReconciliationResponse,
)
from app.services import ledger_store
from app.services.credits_engine import adjust_credits, reconcile_account, refund_credits
from app.services.ledger_store import CreditError


router = APIRouter(dependencies=[Depends(require_admin)])


@router.post("/admin/users/{user_id}/credits/adjust")
def admin_adjust_credits(
    user_id: str,
    body: CreditAdjustRequest,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
) -> dict:
    user_id = (user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=400, detail="Invalid user_id")

    reason = (body.reason or "").strip()
    result = adjust_credits(db, user_id, int(body.amount or 0), f"{reason} (by {admin.id})" if reason else f"by {admin.id}")
    if not result.success:
        raise credit_error_to_http(result.error)
    return {"ok": True, "balance": result.new_balance, "entry_id": result.entry_id}


@router.post("/admin/readings/{reading_id}/refund")
def admin_refund_reading(
    reading_id: int,
    body: ReadingRefundRequest,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
) -> dict:
    reading = ledger_store.get_reading(db, reading_id)
    if reading is None:
        raise HTTPException(status_code=404, detail="Reading not found")

    reason = (body.reason or "").strip() or "reading failed"
    result = refund_credits(
        db,
        reading.user_id,
        int(reading.credits_spent),
        f"{reason} (by {admin.id})",
        original_entry_id=reading.ledger_entry_id,
    )
    if result.error == CreditError.DUPLICATE:
        raise HTTPException(status_code=409, detail="Reading already refunded")
    if not result.success:
        raise credit_error_to_http(result.error)
    return {"ok": True, "balance": result.new_balance, "entry_id": result.entry_id}


@router.get("/admin/users/{user_id}/credits/reconcile", response_model=ReconciliationResponse)
def admin_reconcile_credits(user_id: str, db: Session = Depends(get_db)):
    report = reconcile_account(db, user_id)
    if report is None:
        raise credit_error_to_http(CreditError.ACCOUNT_NOT_FOUND)
    return ReconciliationResponse(
        user_id=report.user_id,
        balance=report.balance,
        ledger_sum=report.ledger_sum,
        total_earned=report.total_earned,
        total_spent=report.total_spent,
        ok=report.ok,
    )


@router.get("/admin/transactions", response_model=LedgerPageResponse)
def admin_list_transactions(
    kind: str | None = None,
    user_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
):
    limit = max(1, min(int(limit or 50), 100))
    offset = max(0, int(offset or 0))
    if kind:
        try:
            kind = LedgerKind(kind.strip().upper()).value
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid kind")
    rows, total = ledger_store.list_entries(db, user_id=user_id or None, kind=kind or None, limit=limit, offset=offset)
    return LedgerPageResponse(
        items=[LedgerEntryResponse.model_validate(r) for r in rows],
        total=total,
        limit=limit,
        offset=offset,
    )
