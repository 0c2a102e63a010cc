from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.api.errors import credit_error_to_http
from app.core.database import get_db
from app.core.security import CurrentUser, get_current_user
from app.schemas.credits import ReadingRequest
from app.services import ledger_store
from app.services.costs import SPREAD_COSTS, normalize_spread_type
from app.services.credits_engine import charge_follow_up
from app.services.readings import complete_reading


router = APIRouter(dependencies=[Depends(get_current_user)])


@router.post("/me/readings")
def create_reading(
    body: ReadingRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> dict:
    if normalize_spread_type(body.spread_type) not in SPREAD_COSTS:
        raise HTTPException(status_code=400, detail="Unknown spread type")

    result = complete_reading(
        db,
        current_user.id,
        body.spread_type,
        has_advanced_style=body.has_advanced_style,
        has_extended_question=body.has_extended_question,
    )
    if not result.success:
        raise credit_error_to_http(result.error)
    return {
        "success": True,
        "readingId": result.reading_id,
        "creditsSpent": result.credits_spent,
        "newBalance": result.new_balance,
        "totalReadings": result.total_readings,
        "unlockedAchievements": [
            {"achievementId": a.achievement_id, "reward": a.reward} for a in result.unlocked_achievements
        ],
    }


@router.post("/me/readings/{reading_id}/follow-up")
def ask_follow_up(
    reading_id: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> dict:
    reading = ledger_store.get_reading(db, reading_id)
    if reading is None or reading.user_id != current_user.id:
        raise HTTPException(status_code=404, detail="Reading not found")

    result = charge_follow_up(db, current_user.id, reading_id)
    if not result.success:
        raise credit_error_to_http(result.error)
    return {"success": True, "newBalance": result.new_balance}
