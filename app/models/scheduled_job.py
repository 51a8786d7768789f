"""
Scheduled Insight Job Models

Recurring configuration that triggers the insight pipeline. The live timer
for a job exists only in the running process (see app.scheduler); this row
is the durable part.
"""
import uuid
from datetime import datetime

from sqlalchemy import Column, String, DateTime, JSON, Boolean, Text

from app.models.base import Base


class ScheduledInsightJob(Base):
    """Recurring insight generation job"""
    __tablename__ = "scheduled_insight_jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Ownership
    user_id = Column(String(64), index=True, nullable=False)
    organization_id = Column(String(64), index=True, nullable=False)

    # Configuration
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    insight_type = Column(String(20), nullable=False)
    frequency = Column(String(20), nullable=True)  # daily, weekly, monthly
    cron_expression = Column(String(100), nullable=True)  # wins over frequency
    options = Column(JSON, nullable=False, default=dict)
    target_entities = Column(JSON, nullable=True)  # [{"id": "...", "type": "product"}]
    is_active = Column(Boolean, default=True, index=True)

    # Run bookkeeping
    last_run = Column(DateTime, nullable=True)
    next_run = Column(DateTime, nullable=True, index=True)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "organization_id": self.organization_id,
            "name": self.name,
            "description": self.description,
            "type": self.insight_type,
            "frequency": self.frequency,
            "cron_expression": self.cron_expression,
            "options": self.options or {},
            "target_entities": self.target_entities or [],
            "is_active": bool(self.is_active),
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<ScheduledInsightJob {self.id} {self.name} active={self.is_active}>"
