from sqlalchemy import Column, String, JSON, DateTime

from app.db.base import Base


class SessionCheckpoint(Base):
    """Recovery record for one in-progress attempt, keyed by assignment."""

    __tablename__ = "session_checkpoints"

    assignment_id = Column(String(64), primary_key=True)
    payload = Column(JSON, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
