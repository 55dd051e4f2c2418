import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, String, Text, JSON

from app.db.base import Base


def _uuid_str() -> str:
    return str(uuid.uuid4())


class AssessmentTemplate(Base):
    __tablename__ = "assessment_templates"

    id = Column(String(64), primary_key=True, default=_uuid_str)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    company_code = Column(String(64), nullable=True)

    # Ordered question list (headings included) as authored by the builder
    fields = Column(JSON, nullable=False, default=list)

    # Default policy: timing, attempts, grading, retry, time window
    assessment_meta = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
