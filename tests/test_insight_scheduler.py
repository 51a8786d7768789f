"""
Scheduled insight job tests.

The APScheduler instance is never started: timers stay pending, which is
enough to count live timers per job id without anything actually firing.
"""
import asyncio
import threading
from datetime import datetime
from types import SimpleNamespace

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from app.models.insight import BackendFamily, InsightSource, InsightStatus, InsightType
from app.scheduler import (
    FREQUENCY_CRON,
    InsightScheduler,
    JobRegistry,
    build_trigger,
    calculate_next_run_time,
)
from app.services.credit_service import CreditService, SCHEDULED_INSIGHT_JOB_CREATION_COST
from app.services.exceptions import (
    InsufficientCredits,
    InvalidSchedule,
    JobAccessDenied,
    JobNotFound,
)
from app.services.insight_generation_service import InsightGenerationService
from app.services.insight_repository import InsightRepository
from app.services.llm_service import TextGenerationBackend
from app.services.model_router import ModelRouter
from app.services.scheduled_job_repository import ScheduledJobRepository
from app.utils.helpers import utcnow


def _run(coro):
    """Run an async coroutine in a sync test."""
    return asyncio.run(coro)


class FakeGenerationService:
    def __init__(self, error=None):
        self.error = error
        self.requests = []

    async def generate_insight(self, request):
        self.requests.append(request)
        if self.error:
            raise self.error
        return SimpleNamespace(id=f"insight-{len(self.requests)}")


def _scheduler(session_factory, generation_service=None, credits=100):
    credit_service = CreditService(session_factory)
    if credits:
        _run(credit_service.add_credits("org-1", credits))
    return InsightScheduler(
        job_repository=ScheduledJobRepository(session_factory),
        credit_service=credit_service,
        generation_service=generation_service or FakeGenerationService(),
        scheduler=AsyncIOScheduler(timezone="UTC"),
        tz="UTC",
    )


def _job_data(**overrides):
    data = {
        "name": "Weekly performance review",
        "insight_type": InsightType.PERFORMANCE,
        "frequency": "daily",
        "options": {"model": "deepseek-lite", "use_rag": False},
        "target_entities": [{"id": "SKU-001", "type": "product"}, {"id": "SKU-002", "type": "product"}],
    }
    data.update(overrides)
    return data


def _live_timers(scheduler, job_id=None):
    jobs = scheduler.scheduler.get_jobs()
    return [j for j in jobs if job_id is None or j.id == job_id]


# ────────────────────────────────────────────
# NEXT-RUN COMPUTATION
# ────────────────────────────────────────────


class TestNextRunTime:

    def test_daily_runs_next_midnight(self):
        assert calculate_next_run_time("daily", now=datetime(2024, 1, 1, 10, 0), tz="UTC") == datetime(2024, 1, 2)

    def test_daily_at_midnight_runs_the_following_day(self):
        assert calculate_next_run_time("daily", now=datetime(2024, 1, 2), tz="UTC") == datetime(2024, 1, 3)

    @pytest.mark.parametrize("now,expected", [
        (datetime(2024, 1, 3, 15, 0), datetime(2024, 1, 8)),   # Wednesday
        (datetime(2024, 1, 7, 23, 59), datetime(2024, 1, 8)),  # Sunday
        (datetime(2024, 1, 1, 10, 0), datetime(2024, 1, 8)),   # Monday morning
        (datetime(2024, 1, 1, 0, 0), datetime(2024, 1, 8)),    # Monday midnight
    ])
    def test_weekly_runs_next_monday(self, now, expected):
        assert calculate_next_run_time("weekly", now=now, tz="UTC") == expected

    @pytest.mark.parametrize("now,expected", [
        (datetime(2024, 1, 15, 8, 0), datetime(2024, 2, 1)),
        (datetime(2024, 12, 31, 23, 0), datetime(2025, 1, 1)),
        (datetime(2024, 3, 1, 0, 0), datetime(2024, 4, 1)),
    ])
    def test_monthly_runs_first_of_next_month(self, now, expected):
        assert calculate_next_run_time("monthly", now=now, tz="UTC") == expected

    def test_cron_expression_wins_over_frequency(self):
        next_run = calculate_next_run_time("monthly", "0 12 * * *", now=datetime(2024, 1, 1, 10, 0), tz="UTC")
        assert next_run == datetime(2024, 1, 1, 12, 0)

    def test_cron_weekday_range(self):
        # Friday morning -> Monday 06:30
        next_run = calculate_next_run_time(None, "30 6 * * 1-5", now=datetime(2024, 1, 5, 10, 0), tz="UTC")
        assert next_run == datetime(2024, 1, 8, 6, 30)

    @pytest.mark.parametrize("day_of_week", ["0", "7", "sun"])
    def test_cron_sunday(self, day_of_week):
        next_run = calculate_next_run_time(None, f"0 9 * * {day_of_week}", now=datetime(2024, 1, 1), tz="UTC")
        assert next_run == datetime(2024, 1, 7, 9, 0)

    def test_cron_sunday_first_range(self):
        # 0-2 is Sunday, Monday, Tuesday
        next_run = calculate_next_run_time(None, "0 9 * * 0-2", now=datetime(2024, 1, 3), tz="UTC")
        assert next_run == datetime(2024, 1, 7, 9, 0)

    @pytest.mark.parametrize("day_of_week,expected", [
        # Sunday, Tuesday, Thursday, Saturday
        ("*/2", datetime(2024, 1, 2, 9, 0)),
        ("0-6/2", datetime(2024, 1, 2, 9, 0)),
        # Monday, Wednesday, Friday
        ("1-5/2", datetime(2024, 1, 3, 9, 0)),
        # Monday, Thursday
        ("1/3", datetime(2024, 1, 4, 9, 0)),
    ])
    def test_cron_weekday_step_counts_from_sunday(self, day_of_week, expected):
        # Monday 2024-01-01, after the 09:00 slot
        now = datetime(2024, 1, 1, 10, 0)
        assert calculate_next_run_time(None, f"0 9 * * {day_of_week}", now=now, tz="UTC") == expected

    def test_cron_weekday_step_reaches_saturday(self):
        next_run = calculate_next_run_time(None, "0 9 * * */2", now=datetime(2024, 1, 4, 10, 0), tz="UTC")
        assert next_run == datetime(2024, 1, 6, 9, 0)

    @pytest.mark.parametrize("day_of_week", ["*/0", "5-1/2", "*/x"])
    def test_invalid_weekday_step(self, day_of_week):
        with pytest.raises(InvalidSchedule):
            calculate_next_run_time(None, f"0 9 * * {day_of_week}", now=datetime(2024, 1, 1), tz="UTC")

    def test_cron_step(self):
        next_run = calculate_next_run_time(None, "*/15 * * * *", now=datetime(2024, 1, 1, 10, 7), tz="UTC")
        assert next_run == datetime(2024, 1, 1, 10, 15)

    def test_fixed_frequency_in_scheduler_timezone(self):
        # 21:00 in Sydney (UTC+11); next local midnight is 13:00 UTC
        next_run = calculate_next_run_time("daily", now=datetime(2024, 1, 1, 10, 0), tz="Australia/Sydney")
        assert next_run == datetime(2024, 1, 1, 13, 0)

    @pytest.mark.parametrize("frequency,cron", [
        ("hourly", None),
        (None, None),
        (None, "61 * * * *"),
        (None, "* * *"),
        (None, "0 0 * * 9"),
        ("daily", "0 0 * * mon extra"),
    ])
    def test_invalid_schedule(self, frequency, cron):
        with pytest.raises(InvalidSchedule):
            calculate_next_run_time(frequency, cron, now=datetime(2024, 1, 1), tz="UTC")

    def test_frequency_cron_mapping(self):
        assert FREQUENCY_CRON == {"daily": "0 0 * * *", "weekly": "0 0 * * 1", "monthly": "0 0 1 * *"}
        for frequency, cron in FREQUENCY_CRON.items():
            now = datetime(2024, 5, 15, 12, 0)
            assert calculate_next_run_time(frequency, now=now, tz="UTC") == \
                calculate_next_run_time(None, cron, now=now, tz="UTC")


# ────────────────────────────────────────────
# REGISTRY
# ────────────────────────────────────────────


class TestJobRegistry:

    async def _noop(self, job_id):
        return None

    def test_schedule_replaces_existing_timer(self):
        aps = AsyncIOScheduler(timezone="UTC")
        registry = JobRegistry(aps)
        trigger = build_trigger("daily", tz="UTC")

        registry.schedule("job-1", self._noop, trigger)
        registry.schedule("job-1", self._noop, trigger)

        assert len(registry) == 1
        assert len(aps.get_jobs()) == 1

    def test_unschedule_and_clear(self):
        aps = AsyncIOScheduler(timezone="UTC")
        registry = JobRegistry(aps)
        trigger = build_trigger("weekly", tz="UTC")

        registry.schedule("job-1", self._noop, trigger)
        registry.schedule("job-2", self._noop, trigger)

        assert registry.unschedule("job-1") is True
        assert registry.unschedule("job-1") is False
        assert registry.job_ids() == ["job-2"]

        registry.clear()
        assert len(registry) == 0
        assert aps.get_jobs() == []

    def test_concurrent_schedules_leave_one_timer(self):
        aps = AsyncIOScheduler(timezone="UTC")
        registry = JobRegistry(aps)
        trigger = build_trigger("daily", tz="UTC")

        def worker():
            for _ in range(20):
                registry.schedule("job-1", self._noop, trigger)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(registry) == 1
        assert len(aps.get_jobs()) == 1


# ────────────────────────────────────────────
# JOB LIFECYCLE
# ────────────────────────────────────────────


class TestJobLifecycle:

    def test_create_job_persists_charges_and_schedules(self, session_factory):
        scheduler = _scheduler(session_factory)

        job = _run(scheduler.create_job("org-1", "user-1", _job_data()))

        assert job.id
        assert job.insight_type == "performance"
        assert job.next_run > utcnow()
        assert (job.next_run.hour, job.next_run.minute) == (0, 0)
        assert job.options["model"] == "deepseek-lite"
        assert job.options["temperature"] == 0.2
        assert [j.id for j in scheduler.list_jobs("org-1")] == [job.id]

        assert len(_live_timers(scheduler, job.id)) == 1
        assert job.id in scheduler.registry

        balance = _run(scheduler.credit_service.get_balance("org-1"))
        assert balance == 100 - SCHEDULED_INSIGHT_JOB_CREATION_COST

    def test_inactive_job_has_no_timer(self, session_factory):
        scheduler = _scheduler(session_factory)

        job = _run(scheduler.create_job("org-1", "user-1", _job_data(is_active=False)))

        assert job.is_active is False
        assert _live_timers(scheduler) == []

    def test_create_without_credits_persists_nothing(self, session_factory):
        scheduler = _scheduler(session_factory, credits=5)

        with pytest.raises(InsufficientCredits) as exc:
            _run(scheduler.create_job("org-1", "user-1", _job_data()))

        assert "scheduled insight job" in str(exc.value)
        assert scheduler.list_jobs("org-1") == []
        assert _live_timers(scheduler) == []

    def test_create_with_invalid_schedule_persists_nothing(self, session_factory):
        scheduler = _scheduler(session_factory)

        with pytest.raises(InvalidSchedule):
            _run(scheduler.create_job("org-1", "user-1", _job_data(frequency="fortnightly")))

        assert scheduler.list_jobs("org-1") == []
        assert _run(scheduler.credit_service.get_balance("org-1")) == 100

    def test_update_twice_leaves_one_timer(self, session_factory):
        scheduler = _scheduler(session_factory)
        job = _run(scheduler.create_job("org-1", "user-1", _job_data()))

        patch = {"frequency": "weekly", "name": "Renamed"}
        _run(scheduler.update_job(job.id, patch, "org-1"))
        updated = _run(scheduler.update_job(job.id, patch, "org-1"))

        assert updated.name == "Renamed"
        assert updated.frequency == "weekly"
        assert updated.next_run.weekday() == 0
        assert len(_live_timers(scheduler, job.id)) == 1
        assert len(scheduler.registry) == 1

    def test_update_without_schedule_change_keeps_next_run(self, session_factory):
        scheduler = _scheduler(session_factory)
        job = _run(scheduler.create_job("org-1", "user-1", _job_data(frequency="monthly")))

        updated = _run(scheduler.update_job(job.id, {"description": "Board pack"}, "org-1"))

        assert updated.next_run == job.next_run
        assert updated.description == "Board pack"

    def test_update_to_cron_expression(self, session_factory):
        scheduler = _scheduler(session_factory)
        job = _run(scheduler.create_job("org-1", "user-1", _job_data()))

        updated = _run(scheduler.update_job(job.id, {"cron_expression": "0 6 * * *"}, "org-1"))

        assert updated.cron_expression == "0 6 * * *"
        assert (updated.next_run.hour, updated.next_run.minute) == (6, 0)

    def test_update_with_invalid_cron_keeps_job_unchanged(self, session_factory):
        scheduler = _scheduler(session_factory)
        job = _run(scheduler.create_job("org-1", "user-1", _job_data()))

        with pytest.raises(InvalidSchedule):
            _run(scheduler.update_job(job.id, {"cron_expression": "not a cron"}, "org-1"))

        stored = scheduler.get_job(job.id)
        assert stored.cron_expression is None
        assert len(_live_timers(scheduler, job.id)) == 1

    def test_deactivate_and_activate(self, session_factory):
        scheduler = _scheduler(session_factory)
        job = _run(scheduler.create_job("org-1", "user-1", _job_data()))

        deactivated = _run(scheduler.deactivate_job(job.id, "org-1"))
        assert deactivated.is_active is False
        assert _live_timers(scheduler) == []
        assert scheduler.get_job(job.id, "org-1") is not None

        activated = _run(scheduler.activate_job(job.id, "org-1"))
        assert activated.is_active is True
        assert len(_live_timers(scheduler, job.id)) == 1

    def test_delete_stops_timer_and_removes_record(self, session_factory):
        scheduler = _scheduler(session_factory)
        job = _run(scheduler.create_job("org-1", "user-1", _job_data()))

        assert _run(scheduler.delete_job(job.id, "org-1")) is True

        assert _live_timers(scheduler) == []
        with pytest.raises(JobNotFound):
            scheduler.get_job(job.id)

    def test_other_organization_is_denied(self, session_factory):
        scheduler = _scheduler(session_factory)
        job = _run(scheduler.create_job("org-1", "user-1", _job_data()))

        with pytest.raises(JobAccessDenied):
            _run(scheduler.update_job(job.id, {"name": "x"}, "org-2"))
        with pytest.raises(JobAccessDenied):
            _run(scheduler.delete_job(job.id, "org-2"))
        with pytest.raises(JobAccessDenied):
            _run(scheduler.run_job_now(job.id, "org-2"))
        with pytest.raises(JobAccessDenied):
            _run(scheduler.deactivate_job(job.id, "org-2"))

        assert len(_live_timers(scheduler, job.id)) == 1

    def test_missing_job(self, session_factory):
        scheduler = _scheduler(session_factory)

        with pytest.raises(JobNotFound):
            _run(scheduler.update_job("missing", {"name": "x"}))
        with pytest.raises(JobNotFound):
            _run(scheduler.delete_job("missing"))
        with pytest.raises(JobNotFound):
            _run(scheduler.run_job_now("missing"))


# ────────────────────────────────────────────
# FIRING
# ────────────────────────────────────────────


class TestFiring:

    def test_run_job_now_builds_scheduled_request(self, session_factory):
        generation = FakeGenerationService()
        scheduler = _scheduler(session_factory, generation_service=generation)
        job = _run(scheduler.create_job("org-1", "user-1", _job_data(options={"model": "claude", "use_rag": True})))

        insight_id = _run(scheduler.run_job_now(job.id, "org-1"))

        assert insight_id == "insight-1"
        request = generation.requests[0]
        assert request.insight_type == InsightType.PERFORMANCE
        assert request.user_id == "user-1"
        assert request.organization_id == "org-1"
        assert request.source == InsightSource.SCHEDULED
        assert request.options.model == "claude"
        assert request.options.use_rag is True
        assert request.target_entity_ids == ["SKU-001", "SKU-002"]
        assert request.target_entity_type == "product"

    def test_run_job_now_records_run_times(self, session_factory):
        scheduler = _scheduler(session_factory)
        job = _run(scheduler.create_job("org-1", "user-1", _job_data()))
        before = utcnow()

        _run(scheduler.run_job_now(job.id))

        stored = scheduler.get_job(job.id)
        assert stored.last_run >= before
        assert stored.next_run > stored.last_run
        assert stored.last_error is None

    def test_failed_run_still_records_run_times(self, session_factory):
        generation = FakeGenerationService(error=InsufficientCredits("org-1", 5))
        scheduler = _scheduler(session_factory, generation_service=generation)
        job = _run(scheduler.create_job("org-1", "user-1", _job_data()))

        with pytest.raises(InsufficientCredits):
            _run(scheduler.run_job_now(job.id))

        stored = scheduler.get_job(job.id)
        assert stored.last_run is not None
        assert stored.next_run > stored.last_run
        assert "Not enough credits" in stored.last_error

    def test_timer_firing_swallows_failures(self, session_factory):
        generation = FakeGenerationService(error=RuntimeError("backend down"))
        scheduler = _scheduler(session_factory, generation_service=generation)
        job = _run(scheduler.create_job("org-1", "user-1", _job_data()))

        _run(scheduler._fire_job(job.id))

        stored = scheduler.get_job(job.id)
        assert stored.last_error == "backend down"
        assert stored.last_run is not None
        assert len(_live_timers(scheduler, job.id)) == 1

    def test_success_clears_previous_error(self, session_factory):
        generation = FakeGenerationService(error=RuntimeError("backend down"))
        scheduler = _scheduler(session_factory, generation_service=generation)
        job = _run(scheduler.create_job("org-1", "user-1", _job_data()))

        _run(scheduler._fire_job(job.id))
        generation.error = None
        _run(scheduler._fire_job(job.id))

        assert scheduler.get_job(job.id).last_error is None

    def test_firing_for_deleted_job_stops_timer(self, session_factory):
        generation = FakeGenerationService()
        scheduler = _scheduler(session_factory, generation_service=generation)
        job = _run(scheduler.create_job("org-1", "user-1", _job_data()))
        scheduler.job_repository.delete_job(job.id)

        _run(scheduler._fire_job(job.id))

        assert generation.requests == []
        assert _live_timers(scheduler) == []

    def test_run_now_generates_scheduled_insight_end_to_end(self, session_factory):
        class Backend(TextGenerationBackend):
            async def complete(self, prompt, options, rag_context=""):
                return "Title: Scheduled check\nSummary: All good.\nPriority: low"

        backend = Backend()
        generation = InsightGenerationService(
            insight_repository=InsightRepository(session_factory),
            credit_service=CreditService(session_factory),
            model_router=ModelRouter(backends={BackendFamily.DEEPSEEK: backend, BackendFamily.HOSTED_CHAT: backend}),
        )
        scheduler = _scheduler(session_factory, generation_service=generation)
        job = _run(scheduler.create_job("org-1", "user-1", _job_data()))

        async def scenario():
            insight_id = await scheduler.run_job_now(job.id, "org-1")
            await generation.drain()
            return insight_id

        insight_id = _run(scenario())

        insight = InsightRepository(session_factory).find_by_id(insight_id)
        assert insight.status == InsightStatus.COMPLETED.value
        assert insight.source == InsightSource.SCHEDULED.value
        assert insight.priority == "low"
        assert insight.related_entity_ids == ["SKU-001", "SKU-002"]


# ────────────────────────────────────────────
# STARTUP
# ────────────────────────────────────────────


def test_initialize_rebuilds_timers_for_active_jobs(session_factory):
    repository = ScheduledJobRepository(session_factory)
    for name, active in (("a", True), ("b", True), ("c", False)):
        repository.create_job(
            user_id="user-1",
            organization_id="org-1",
            name=name,
            insight_type="risk",
            frequency="daily",
            options={},
            is_active=active,
        )

    scheduler = _scheduler(session_factory, credits=0)

    assert scheduler.initialize() == 2
    assert scheduler.initialize() == 2
    assert len(_live_timers(scheduler)) == 2
    assert len(scheduler.registry) == 2


def test_initialize_skips_jobs_with_broken_schedules(session_factory):
    repository = ScheduledJobRepository(session_factory)
    repository.create_job(
        user_id="user-1", organization_id="org-1", name="ok", insight_type="risk",
        frequency="weekly", options={}, is_active=True,
    )
    repository.create_job(
        user_id="user-1", organization_id="org-1", name="broken", insight_type="risk",
        frequency=None, cron_expression="every tuesday", options={}, is_active=True,
    )

    scheduler = _scheduler(session_factory, credits=0)

    assert scheduler.initialize() == 1
