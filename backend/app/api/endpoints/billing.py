from __future__ import annotations

import hashlib
import hmac
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.api.errors import credit_error_to_http
from app.core.database import get_db
from app.core.settings import settings
from app.schemas.credits import PaymentEvent
from app.services.credits_engine import (
    PAYMENT_PROVIDERS,
    get_or_create_credit_account,
    grant_purchase,
    process_payment_refund,
)
from app.services.ledger_store import CreditError


logger = logging.getLogger(__name__)

router = APIRouter()


def _verify_webhook_signature(raw_body: bytes, signature: str | None) -> None:
    if not settings.payment_webhook_secret:
        raise HTTPException(status_code=500, detail="PAYMENT_WEBHOOK_SECRET is not configured")
    sig = (signature or "").strip()
    if not sig:
        raise HTTPException(status_code=400, detail="Missing X-Signature")
    digest = hmac.new(
        key=str(settings.payment_webhook_secret).encode("utf-8"),
        msg=raw_body,
        digestmod=hashlib.sha256,
    ).hexdigest()
    if not hmac.compare_digest(digest, sig):
        raise HTTPException(status_code=400, detail="Invalid signature")


@router.post("/billing/webhook")
async def payment_webhook(request: Request, db: Session = Depends(get_db)) -> dict:
    raw_body = await request.body()
    _verify_webhook_signature(raw_body, request.headers.get("x-signature"))
    try:
        event = PaymentEvent.model_validate_json(raw_body)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Invalid payload")

    provider = event.provider.strip().lower()
    payment_id = event.payment_id.strip()
    user_id = event.user_id.strip()
    if provider not in PAYMENT_PROVIDERS or not payment_id or not user_id:
        raise HTTPException(status_code=400, detail="Invalid payload")

    if event.event == "payment_completed":
        get_or_create_credit_account(db, user_id)
        result = grant_purchase(db, user_id, event.credits, provider, payment_id)
        # Providers retry deliveries; the ledger books each payment source once.
        if result.error == CreditError.DUPLICATE:
            logger.info("billing.webhook.duplicate provider=%s payment_id=%s", provider, payment_id)
            return {"received": True, "duplicate": True}
        if not result.success:
            raise credit_error_to_http(result.error)
        return {"received": True, "balance": result.new_balance}

    if event.event == "payment_refunded":
        result = process_payment_refund(db, user_id, provider, payment_id)
        if result is None:
            return {"received": True, "ignored": True}
        if result.error == CreditError.DUPLICATE:
            logger.info("billing.webhook.duplicate_refund provider=%s payment_id=%s", provider, payment_id)
            return {"received": True, "duplicate": True}
        if not result.success:
            raise credit_error_to_http(result.error)
        return {"received": True, "balance": result.new_balance}

    return {"received": True}
