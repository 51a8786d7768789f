"""
Scheduler for recurring insight jobs

Each active ScheduledInsightJob gets one live APScheduler timer. Timers exist
only in this process and are rebuilt from the database by initialize() at
startup. Running more than one scheduler process against the same database
will fire each job once per process.

Fixed frequencies (times in settings.scheduler_timezone):
- daily:   every day at midnight        (0 0 * * *)
- weekly:  every Monday at midnight     (0 0 * * 1)
- monthly: first of the month, midnight (0 0 1 * *)

A raw cron expression (standard five fields) wins over the frequency.
"""
import threading
from datetime import datetime, timedelta, timezone as dt_timezone
from functools import lru_cache
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo

from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from app.config import get_settings
from app.models.insight import InsightType, InsightSource
from app.models.scheduled_job import ScheduledInsightJob
from app.services.credit_service import CreditService, SCHEDULED_INSIGHT_JOB_CREATION_COST
from app.services.exceptions import (
    InsufficientCredits,
    InvalidSchedule,
    JobAccessDenied,
    JobNotFound,
)
from app.services.insight_generation_service import (
    AnalysisOptions,
    InsightGenerationService,
    InsightRequest,
    get_insight_generation_service,
)
from app.services.scheduled_job_repository import ScheduledJobRepository
from app.utils.helpers import utcnow
from app.utils.logger import log

settings = get_settings()


FREQUENCY_CRON = {
    "daily": "0 0 * * *",
    "weekly": "0 0 * * 1",
    "monthly": "0 0 1 * *",
}

_FREQUENCY_FIELDS = {
    "daily": {"hour": 0, "minute": 0},
    "weekly": {"day_of_week": "mon", "hour": 0, "minute": 0},
    "monthly": {"day": 1, "hour": 0, "minute": 0},
}

# APScheduler counts weekdays from Monday=0; crontab counts from Sunday=0
_WEEKDAY_NAMES = ["sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun"]

_UPDATABLE_FIELDS = (
    "name", "description", "insight_type", "frequency", "cron_expression",
    "options", "target_entities", "is_active",
)


def _zone(tz: Optional[str] = None) -> ZoneInfo:
    return ZoneInfo(tz or settings.scheduler_timezone)


def _weekday_name(value: str) -> str:
    if not value.isdigit():
        return value.lower()
    if int(value) > 7:
        raise InvalidSchedule(f"Invalid day of week in cron expression: {value}")
    return _WEEKDAY_NAMES[int(value)]


def _weekday_number(value: str) -> int:
    name = _weekday_name(value)
    if name not in _WEEKDAY_NAMES:
        raise InvalidSchedule(f"Invalid day of week in cron expression: {value}")
    return _WEEKDAY_NAMES.index(name) if value != "7" else 7


def _stepped_weekdays(expr: str, step: str) -> List[str]:
    """Expand '*/n', 'a-b/n' or 'a/n' over crontab numbering into day names"""
    if not step.isdigit() or int(step) == 0:
        raise InvalidSchedule(f"Invalid day of week step in cron expression: {expr}/{step}")

    if expr == "*":
        first, last = 0, 6
    else:
        start, dash, end = expr.partition("-")
        first = _weekday_number(start)
        last = _weekday_number(end) if dash else 6
    if first > last:
        raise InvalidSchedule(f"Invalid day of week range in cron expression: {expr}")

    names = []
    for day in range(first, last + 1, int(step)):
        if _WEEKDAY_NAMES[day] not in names:
            names.append(_WEEKDAY_NAMES[day])
    return names


def _crontab_weekdays(field: str) -> str:
    """Rewrite a crontab day-of-week field with names so both numberings agree"""
    names = []
    for part in field.split(","):
        expr, slash, step = part.partition("/")
        if slash:
            names.extend(_stepped_weekdays(expr, step))
            continue
        if expr == "*":
            names.append(expr)
            continue
        start, dash, end = expr.partition("-")
        if dash and start == "0":
            # Sunday-first range: Sunday plus Monday..end
            names.append("sun")
            if end != "0":
                names.append(f"mon-{_weekday_name(end)}")
            continue
        name = _weekday_name(start)
        if dash:
            name = f"{name}-{_weekday_name(end)}"
        names.append(name)
    return ",".join(names)


def build_trigger(frequency: Optional[str], cron_expression: Optional[str] = None,
                  tz: Optional[str] = None) -> CronTrigger:
    """
    CronTrigger for a job's schedule.

    Raises:
        InvalidSchedule: unknown frequency or malformed cron expression
    """
    zone = _zone(tz)

    if cron_expression:
        fields = cron_expression.split()
        if len(fields) != 5:
            raise InvalidSchedule(f"Cron expression must have 5 fields: '{cron_expression}'")
        minute, hour, day, month, day_of_week = fields
        try:
            return CronTrigger(
                minute=minute,
                hour=hour,
                day=day,
                month=month,
                day_of_week=_crontab_weekdays(day_of_week),
                timezone=zone
            )
        except ValueError as e:
            raise InvalidSchedule(f"Invalid cron expression '{cron_expression}': {str(e)}") from e

    if frequency not in _FREQUENCY_FIELDS:
        raise InvalidSchedule(f"Unsupported job frequency: {frequency}")
    return CronTrigger(timezone=zone, **_FREQUENCY_FIELDS[frequency])


def calculate_next_run_time(frequency: Optional[str], cron_expression: Optional[str] = None,
                            now: Optional[datetime] = None, tz: Optional[str] = None) -> datetime:
    """
    Next run strictly after `now`, as naive UTC.

    A weekly job asked on a Monday at midnight runs the following Monday.
    """
    trigger = build_trigger(frequency, cron_expression, tz)

    now = now or utcnow()
    if now.tzinfo is None:
        now = now.replace(tzinfo=dt_timezone.utc)

    next_fire = trigger.get_next_fire_time(None, now.astimezone(_zone(tz)) + timedelta(microseconds=1))
    if next_fire is None:
        raise InvalidSchedule(f"Schedule never fires: {cron_expression or frequency}")

    return next_fire.astimezone(dt_timezone.utc).replace(tzinfo=None)


class JobRegistry:
    """
    Live timers keyed by job id.

    Every operation holds the lock, and schedule() removes an existing timer
    before adding the new one, so one job id never has two timers.
    """

    def __init__(self, scheduler: AsyncIOScheduler):
        self.scheduler = scheduler
        self.lock = threading.RLock()
        self._jobs: Dict[str, Job] = {}

    def __len__(self) -> int:
        with self.lock:
            return len(self._jobs)

    def __contains__(self, job_id: str) -> bool:
        with self.lock:
            return job_id in self._jobs

    def job_ids(self) -> List[str]:
        with self.lock:
            return list(self._jobs)

    def get(self, job_id: str) -> Optional[Job]:
        with self.lock:
            return self._jobs.get(job_id)

    def schedule(self, job_id: str, func, trigger: CronTrigger, name: Optional[str] = None) -> Job:
        with self.lock:
            self.unschedule(job_id)
            timer = self.scheduler.add_job(
                func,
                trigger=trigger,
                args=[job_id],
                id=job_id,
                name=name or job_id,
                replace_existing=True,
                max_instances=1,
                coalesce=True
            )
            self._jobs[job_id] = timer
            return timer

    def unschedule(self, job_id: str) -> bool:
        with self.lock:
            timer = self._jobs.pop(job_id, None)
            if timer is None:
                return False
            try:
                self.scheduler.remove_job(job_id)
            except JobLookupError:
                pass
            log.info(f"Stopped scheduled insight job {job_id}")
            return True

    def clear(self) -> None:
        with self.lock:
            for job_id in list(self._jobs):
                self.unschedule(job_id)


class InsightScheduler:
    """Lifecycle and timers for scheduled insight jobs"""

    def __init__(
        self,
        job_repository: Optional[ScheduledJobRepository] = None,
        credit_service: Optional[CreditService] = None,
        generation_service: Optional[InsightGenerationService] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
        tz: Optional[str] = None,
    ):
        self.tz = tz or settings.scheduler_timezone
        self.job_repository = job_repository or ScheduledJobRepository()
        self.credit_service = credit_service or CreditService()
        self.generation_service = generation_service or get_insight_generation_service()
        self.scheduler = scheduler or AsyncIOScheduler(timezone=_zone(self.tz))
        self.registry = JobRegistry(self.scheduler)

    # Lifecycle

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
            log.info("Insight scheduler started")

    def shutdown(self) -> None:
        self.registry.clear()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            log.info("Insight scheduler stopped")

    def initialize(self) -> int:
        """Rebuild timers for every active job; returns how many were scheduled"""
        log.info("Initializing insight scheduler...")
        self.registry.clear()

        try:
            jobs = self.job_repository.find_due_jobs()
        except Exception as e:
            log.error(f"Error initializing insight scheduler: {str(e)}")
            return 0

        scheduled = 0
        for job in jobs:
            if job.is_active and self._schedule_job(job):
                scheduled += 1

        log.info(f"Insight scheduler initialized with {scheduled} active jobs")
        return scheduled

    # Job operations

    async def create_job(self, organization_id: str, user_id: str, data: Dict) -> ScheduledInsightJob:
        """
        Create a job, charge the creation cost and start its timer if active.

        Raises:
            InsufficientCredits: nothing is persisted
            InvalidSchedule: nothing is persisted
        """
        insight_type = self._insight_type(data["insight_type"])

        cost = SCHEDULED_INSIGHT_JOB_CREATION_COST
        if not await self.credit_service.has_available_credits(organization_id, cost):
            raise InsufficientCredits(organization_id, cost, action="create a scheduled insight job")

        frequency = data.get("frequency")
        cron_expression = data.get("cron_expression")
        next_run = calculate_next_run_time(frequency, cron_expression, tz=self.tz)

        job = self.job_repository.create_job(
            user_id=user_id,
            organization_id=organization_id,
            name=data["name"],
            description=data.get("description"),
            insight_type=insight_type,
            frequency=frequency,
            cron_expression=cron_expression,
            options=self._options_dict(data.get("options")),
            target_entities=data.get("target_entities") or [],
            is_active=data.get("is_active", True),
            next_run=next_run,
        )

        try:
            await self.credit_service.use_credits(
                organization_id,
                cost,
                f"Created scheduled insight job: {job.name}",
                job.id
            )
        except Exception:
            self.job_repository.delete_job(job.id)
            raise

        if job.is_active:
            self._schedule_job(job)

        log.info(f"Created scheduled insight job {job.id} - {job.name} (next run {next_run.isoformat()})")
        return job

    async def update_job(self, job_id: str, patch: Dict,
                         organization_id: Optional[str] = None) -> ScheduledInsightJob:
        current = self._get_owned_job(job_id, organization_id, "update")

        fields = {key: patch[key] for key in _UPDATABLE_FIELDS if key in patch}
        if "options" in fields:
            fields["options"] = self._options_dict(fields["options"])
        if "insight_type" in fields:
            fields["insight_type"] = self._insight_type(fields["insight_type"])

        frequency = fields.get("frequency", current.frequency)
        cron_expression = fields.get("cron_expression", current.cron_expression)
        schedule_changed = (frequency, cron_expression) != (current.frequency, current.cron_expression)
        reactivated = fields.get("is_active") and not current.is_active
        if schedule_changed or reactivated or current.next_run is None:
            fields["next_run"] = calculate_next_run_time(frequency, cron_expression, tz=self.tz)

        updated = self.job_repository.update_job(job_id, fields)
        if updated is None:
            raise JobNotFound(job_id)

        with self.registry.lock:
            self.registry.unschedule(job_id)
            if updated.is_active:
                self._schedule_job(updated)

        log.info(f"Updated scheduled insight job {job_id} (active={updated.is_active})")
        return updated

    async def delete_job(self, job_id: str, organization_id: Optional[str] = None) -> bool:
        self._get_owned_job(job_id, organization_id, "delete")

        self.registry.unschedule(job_id)
        if not self.job_repository.delete_job(job_id):
            raise JobNotFound(job_id)

        log.info(f"Deleted scheduled insight job {job_id}")
        return True

    async def run_job_now(self, job_id: str, organization_id: Optional[str] = None) -> str:
        """Fire the job immediately; returns the new insight id"""
        job = self._get_owned_job(job_id, organization_id, "run")
        return await self._run(job)

    async def activate_job(self, job_id: str, organization_id: Optional[str] = None) -> ScheduledInsightJob:
        return await self.update_job(job_id, {"is_active": True}, organization_id)

    async def deactivate_job(self, job_id: str, organization_id: Optional[str] = None) -> ScheduledInsightJob:
        return await self.update_job(job_id, {"is_active": False}, organization_id)

    def list_jobs(self, organization_id: str) -> List[ScheduledInsightJob]:
        return self.job_repository.find_by_organization(organization_id)

    def get_job(self, job_id: str, organization_id: Optional[str] = None) -> ScheduledInsightJob:
        return self._get_owned_job(job_id, organization_id, "view")

    # Internals

    def _get_owned_job(self, job_id: str, organization_id: Optional[str], action: str) -> ScheduledInsightJob:
        job = self.job_repository.find_by_id(job_id)
        if job is None:
            raise JobNotFound(job_id)
        if organization_id is not None and job.organization_id != organization_id:
            raise JobAccessDenied(job_id, action)
        return job

    @staticmethod
    def _insight_type(value) -> str:
        try:
            return InsightType(str(getattr(value, "value", value)).lower()).value
        except ValueError:
            raise ValueError(f"Invalid insight type: {value}")

    @staticmethod
    def _options_dict(options) -> Dict:
        if isinstance(options, AnalysisOptions):
            return options.to_dict()
        return AnalysisOptions.from_dict(options).to_dict()

    def _schedule_job(self, job: ScheduledInsightJob) -> bool:
        try:
            trigger = build_trigger(job.frequency, job.cron_expression, self.tz)
        except InvalidSchedule as e:
            log.error(f"Error scheduling insight job {job.id}: {str(e)}")
            return False

        self.registry.schedule(job.id, self._fire_job, trigger, name=job.name)
        log.info(
            f"Scheduled insight job {job.id} - {job.name} "
            f"with cron: {job.cron_expression or FREQUENCY_CRON.get(job.frequency)}"
        )
        return True

    async def _fire_job(self, job_id: str) -> None:
        """Timer callback; failures are logged and the timer keeps running"""
        job = self.job_repository.find_by_id(job_id)
        if job is None or not job.is_active:
            log.warning(f"Scheduled insight job {job_id} is gone or inactive, stopping its timer")
            self.registry.unschedule(job_id)
            return

        try:
            await self._run(job)
        except Exception as e:
            log.error(f"Error executing scheduled job {job_id}: {str(e)}")

    async def _run(self, job: ScheduledInsightJob) -> str:
        error = None
        try:
            return await self._execute_job(job)
        except Exception as e:
            error = str(e)
            raise
        finally:
            self._record_run(job, error)

    def _record_run(self, job: ScheduledInsightJob, error: Optional[str]) -> None:
        last_run = utcnow()
        try:
            next_run = calculate_next_run_time(job.frequency, job.cron_expression, now=last_run, tz=self.tz)
            self.job_repository.update_job_run_times(job.id, last_run, next_run, last_error=error)
        except Exception as e:
            log.error(f"Error recording run times for scheduled job {job.id}: {str(e)}")

    async def _execute_job(self, job: ScheduledInsightJob) -> str:
        log.info(f"Executing scheduled insight job {job.id} - {job.name}")

        targets = job.target_entities or []
        request = InsightRequest(
            insight_type=InsightType(job.insight_type),
            user_id=job.user_id,
            organization_id=job.organization_id,
            options=AnalysisOptions.from_dict(job.options),
            target_entity_ids=[t["id"] for t in targets if t.get("id")] or None,
            target_entity_type=targets[0].get("type") if targets else None,
            source=InsightSource.SCHEDULED,
        )

        insight = await self.generation_service.generate_insight(request)
        log.info(f"Successfully executed scheduled insight job {job.id}, generated insight {insight.id}")
        return insight.id


@lru_cache()
def get_insight_scheduler() -> InsightScheduler:
    return InsightScheduler()
