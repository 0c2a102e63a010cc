from __future__ import annotations

from fastapi import HTTPException

from app.services.ledger_store import CreditError


_STATUS_AND_DETAIL: dict[CreditError, tuple[int, str]] = {
    CreditError.INSUFFICIENT_BALANCE: (402, "Not enough credits"),
    CreditError.ALREADY_CLAIMED_TODAY: (409, "Daily bonus already claimed for today"),
    CreditError.INVALID_AMOUNT: (400, "Amount must be a non-zero whole number of credits"),
    CreditError.ACCOUNT_NOT_FOUND: (404, "Credit account not found"),
    CreditError.STORAGE_UNAVAILABLE: (503, "Something went wrong, please try again"),
    CreditError.DUPLICATE: (409, "Already processed"),
}


def credit_error_to_http(error: CreditError | None) -> HTTPException:
    status_code, detail = _STATUS_AND_DETAIL.get(
        error or CreditError.STORAGE_UNAVAILABLE,
        _STATUS_AND_DETAIL[CreditError.STORAGE_UNAVAILABLE],
    )
    return HTTPException(status_code=status_code, detail=detail)
