"""
Insight persistence
"""
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import asc, desc
from sqlalchemy.exc import SQLAlchemyError

from app.models.base import SessionLocal
from app.models.insight import Insight
from app.services.exceptions import PersistenceFailure
from app.utils.logger import log


SORTABLE_FIELDS = {"created_at", "updated_at", "priority", "insight_type", "status"}


class InsightRepository:
    """Reads and writes Insight rows; every call uses its own session"""

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def create_insight(self, **fields) -> Insight:
        with self.session_factory() as db:
            try:
                insight = Insight(**fields)
                db.add(insight)
                db.commit()
                db.refresh(insight)
                return insight
            except SQLAlchemyError as e:
                db.rollback()
                log.error(f"Error creating insight: {str(e)}")
                raise PersistenceFailure(f"Failed to create insight: {str(e)}") from e

    def find_by_id(self, insight_id: str) -> Optional[Insight]:
        with self.session_factory() as db:
            return db.get(Insight, insight_id)

    def delete_insight(self, insight_id: str) -> bool:
        with self.session_factory() as db:
            try:
                insight = db.get(Insight, insight_id)
                if insight is None:
                    return False
                db.delete(insight)
                db.commit()
                return True
            except SQLAlchemyError as e:
                db.rollback()
                log.error(f"Error deleting insight {insight_id}: {str(e)}")
                raise PersistenceFailure(f"Failed to delete insight: {str(e)}") from e

    def update_insight(
        self,
        insight_id: str,
        fields: Dict,
        expected_status: Optional[str] = None
    ) -> Optional[Insight]:
        """
        Apply field updates to an insight.

        Returns None when the insight does not exist, or when expected_status
        is given and the stored status differs.
        """
        with self.session_factory() as db:
            try:
                insight = db.get(Insight, insight_id)
                if insight is None:
                    return None
                if expected_status is not None and insight.status != expected_status:
                    log.warning(
                        f"Insight {insight_id} is {insight.status}, expected {expected_status}; update skipped"
                    )
                    return None

                for key, value in fields.items():
                    setattr(insight, key, value)
                insight.updated_at = datetime.utcnow()
                db.commit()
                db.refresh(insight)
                return insight
            except SQLAlchemyError as e:
                db.rollback()
                log.error(f"Error updating insight {insight_id}: {str(e)}")
                raise PersistenceFailure(f"Failed to update insight: {str(e)}") from e

    def find_with_filters(
        self,
        organization_id: str,
        insight_type: Optional[str] = None,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        sort_by: str = "created_at",
        sort_direction: str = "desc",
        limit: int = 50,
        offset: int = 0
    ) -> List[Insight]:
        with self.session_factory() as db:
            query = db.query(Insight).filter(Insight.organization_id == organization_id)

            if insight_type:
                query = query.filter(Insight.insight_type == insight_type)
            if status:
                query = query.filter(Insight.status == status)
            if priority:
                query = query.filter(Insight.priority == priority)
            if entity_type:
                query = query.filter(Insight.related_entity_type == entity_type)

            column = getattr(Insight, sort_by if sort_by in SORTABLE_FIELDS else "created_at")
            query = query.order_by(asc(column) if sort_direction == "asc" else desc(column))

            if entity_id:
                # JSON array membership is not portable across backends
                rows = [i for i in query.all() if entity_id in (i.related_entity_ids or [])]
                return rows[offset:offset + limit]

            return query.offset(offset).limit(limit).all()

    def update_feedback(self, insight_id: str, feedback: str, comments: Optional[str] = None) -> Optional[Insight]:
        return self.update_insight(insight_id, {
            "feedback": feedback,
            "feedback_comments": comments,
            "feedback_at": datetime.utcnow(),
        })
