from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.sql import func

from app.core.database import Base


class Reading(Base):
    """A completed, paid reading. Generated content lives elsewhere."""

    __tablename__ = "readings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    spread_type = Column(String, index=True, nullable=False)
    credits_spent = Column(Integer, nullable=False)
    ledger_entry_id = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
