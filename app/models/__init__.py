"""Database models for the insight pipeline"""

from app.models.insight import (
    Insight,
    InsightType,
    InsightStatus,
    InsightPriority,
    InsightSource,
    InsightModel,
    BackendFamily
)

from app.models.scheduled_job import ScheduledInsightJob

from app.models.credit import CreditAccount, CreditTransaction

from app.models.knowledge import KnowledgeDocument
