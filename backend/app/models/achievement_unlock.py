from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from app.core.database import Base


class AchievementUnlock(Base):
    __tablename__ = "achievement_unlocks"
    __table_args__ = (UniqueConstraint("user_id", "achievement_id", name="uq_achievement_unlocks_user_achievement"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    achievement_id = Column(String, index=True, nullable=False)
    unlocked_at = Column(DateTime(timezone=True), server_default=func.now())
