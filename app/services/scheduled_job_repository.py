"""
Scheduled insight job persistence
"""
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from app.models.base import SessionLocal
from app.models.scheduled_job import ScheduledInsightJob
from app.services.exceptions import PersistenceFailure
from app.utils.logger import log


class ScheduledJobRepository:

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def find_due_jobs(self) -> List[ScheduledInsightJob]:
        """All active jobs, soonest first"""
        with self.session_factory() as db:
            return (
                db.query(ScheduledInsightJob)
                .filter(ScheduledInsightJob.is_active.is_(True))
                .order_by(ScheduledInsightJob.next_run)
                .all()
            )

    def find_by_id(self, job_id: str) -> Optional[ScheduledInsightJob]:
        with self.session_factory() as db:
            return db.get(ScheduledInsightJob, job_id)

    def find_by_organization(self, organization_id: str) -> List[ScheduledInsightJob]:
        with self.session_factory() as db:
            return (
                db.query(ScheduledInsightJob)
                .filter(ScheduledInsightJob.organization_id == organization_id)
                .order_by(ScheduledInsightJob.created_at.desc())
                .all()
            )

    def create_job(self, **fields) -> ScheduledInsightJob:
        with self.session_factory() as db:
            try:
                job = ScheduledInsightJob(**fields)
                db.add(job)
                db.commit()
                db.refresh(job)
                return job
            except SQLAlchemyError as e:
                db.rollback()
                log.error(f"Error creating scheduled insight job: {str(e)}")
                raise PersistenceFailure(f"Failed to create scheduled insight job: {str(e)}") from e

    def update_job(self, job_id: str, fields: Dict) -> Optional[ScheduledInsightJob]:
        with self.session_factory() as db:
            try:
                job = db.get(ScheduledInsightJob, job_id)
                if job is None:
                    return None
                for key, value in fields.items():
                    setattr(job, key, value)
                job.updated_at = datetime.utcnow()
                db.commit()
                db.refresh(job)
                return job
            except SQLAlchemyError as e:
                db.rollback()
                log.error(f"Error updating scheduled insight job {job_id}: {str(e)}")
                raise PersistenceFailure(f"Failed to update scheduled insight job: {str(e)}") from e

    def delete_job(self, job_id: str) -> bool:
        with self.session_factory() as db:
            try:
                job = db.get(ScheduledInsightJob, job_id)
                if job is None:
                    return False
                db.delete(job)
                db.commit()
                return True
            except SQLAlchemyError as e:
                db.rollback()
                log.error(f"Error deleting scheduled insight job {job_id}: {str(e)}")
                raise PersistenceFailure(f"Failed to delete scheduled insight job: {str(e)}") from e

    def update_job_run_times(
        self,
        job_id: str,
        last_run: datetime,
        next_run: datetime,
        last_error: Optional[str] = None
    ) -> Optional[ScheduledInsightJob]:
        return self.update_job(job_id, {
            "last_run": last_run,
            "next_run": next_run,
            "last_error": last_error,
        })
