"""
AI Insight Models

One row per generation pipeline run. Rows are created in PROCESSING status
when the request is accepted and move exactly once to COMPLETED or FAILED.
"""
import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, JSON, Text

from app.models.base import Base


class InsightType(str, enum.Enum):
    """Insight category - selects both the data gathered and the prompt template"""
    PERFORMANCE = "performance"
    COMPETITIVE = "competitive"
    OPPORTUNITY = "opportunity"
    RISK = "risk"

    @property
    def label(self) -> str:
        return self.value.capitalize()


class InsightStatus(str, enum.Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class InsightPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class InsightSource(str, enum.Enum):
    ON_DEMAND = "on_demand"
    SCHEDULED = "scheduled"


class BackendFamily(str, enum.Enum):
    """Group of models sharing one adapter and request/response shape"""
    DEEPSEEK = "deepseek"
    HOSTED_CHAT = "hosted_chat"


class InsightModel(str, enum.Enum):
    """Generation models an insight can be routed to"""
    DEEPSEEK_LITE = "deepseek-lite"
    DEEPSEEK_PRO = "deepseek-pro"
    GEMINI_PRO = "gemini-pro"
    CLAUDE = "claude"

    @property
    def family(self) -> BackendFamily:
        return _MODEL_FAMILIES[self]


_MODEL_FAMILIES = {
    InsightModel.DEEPSEEK_LITE: BackendFamily.DEEPSEEK,
    InsightModel.DEEPSEEK_PRO: BackendFamily.DEEPSEEK,
    InsightModel.GEMINI_PRO: BackendFamily.HOSTED_CHAT,
    InsightModel.CLAUDE: BackendFamily.HOSTED_CHAT,
}


class Insight(Base):
    """
    Generated business insight

    metrics / recommendations / visualizations hold the parsed sections of
    the backend completion; raw_analysis_data keeps the unparsed text.
    """
    __tablename__ = "insights"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Classification
    insight_type = Column(String(20), index=True, nullable=False)
    status = Column(String(20), index=True, nullable=False, default=InsightStatus.PROCESSING.value)
    priority = Column(String(20), index=True, nullable=False, default=InsightPriority.MEDIUM.value)
    source = Column(String(20), nullable=False, default=InsightSource.ON_DEMAND.value)

    # Content
    title = Column(String(255), nullable=False)
    summary = Column(Text, nullable=False)
    metrics = Column(JSON, nullable=False, default=list)
    """
    [{"name": "Revenue", "value": 12.5, "change": 12.5,
      "change_direction": "up", "description": "increased by 12.5%"}]
    """
    recommendations = Column(JSON, nullable=False, default=list)
    visualizations = Column(JSON, nullable=False, default=list)

    # Provenance
    model = Column(String(50), nullable=False)
    raw_analysis_data = Column(Text, nullable=True)
    analysis_time_ms = Column(Integer, nullable=True)
    credit_cost = Column(Integer, nullable=False, default=0)

    # Ownership
    user_id = Column(String(64), index=True, nullable=False)
    organization_id = Column(String(64), index=True, nullable=False)
    related_entity_ids = Column(JSON, nullable=True)
    related_entity_type = Column(String(50), nullable=True)

    # Feedback
    feedback = Column(String(20), nullable=True)  # helpful, not_helpful
    feedback_comments = Column(Text, nullable=True)
    feedback_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.insight_type,
            "status": self.status,
            "priority": self.priority,
            "source": self.source,
            "title": self.title,
            "summary": self.summary,
            "metrics": self.metrics or [],
            "recommendations": self.recommendations or [],
            "visualizations": self.visualizations or [],
            "model": self.model,
            "analysis_time_ms": self.analysis_time_ms,
            "credit_cost": self.credit_cost,
            "user_id": self.user_id,
            "organization_id": self.organization_id,
            "related_entity_ids": self.related_entity_ids,
            "related_entity_type": self.related_entity_type,
            "feedback": self.feedback,
            "feedback_comments": self.feedback_comments,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Insight {self.id} {self.insight_type} {self.status}>"
