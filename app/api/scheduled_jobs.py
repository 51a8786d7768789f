"""
Scheduled insight job endpoints
"""
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.api.deps import Caller, get_caller, to_http_exception
from app.api.insights import AnalysisOptionsModel
from app.scheduler import InsightScheduler, get_insight_scheduler
from app.utils.logger import log

router = APIRouter(prefix="/scheduled-insights", tags=["scheduled-insights"])


class TargetEntity(BaseModel):
    id: str
    type: str


class CreateJobRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    type: str
    frequency: Optional[str] = Field(default=None, pattern="^(daily|weekly|monthly)$")
    cron_expression: Optional[str] = None
    options: AnalysisOptionsModel = Field(default_factory=AnalysisOptionsModel)
    target_entities: Optional[List[TargetEntity]] = None
    is_active: bool = True


class UpdateJobRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    type: Optional[str] = None
    frequency: Optional[str] = Field(default=None, pattern="^(daily|weekly|monthly)$")
    cron_expression: Optional[str] = None
    options: Optional[AnalysisOptionsModel] = None
    target_entities: Optional[List[TargetEntity]] = None
    is_active: Optional[bool] = None


def _job_fields(request: BaseModel) -> dict:
    """Request body as scheduler fields; only keys the client actually sent"""
    data = request.model_dump(exclude_unset=True)
    if "type" in data:
        data["insight_type"] = data.pop("type")
    return data


@router.get("")
async def list_jobs(
    caller: Caller = Depends(get_caller),
    scheduler: InsightScheduler = Depends(get_insight_scheduler),
):
    jobs = scheduler.list_jobs(caller.organization_id)
    return {"jobs": [job.to_dict() for job in jobs], "count": len(jobs)}


@router.get("/{job_id}")
async def get_job(
    job_id: str,
    caller: Caller = Depends(get_caller),
    scheduler: InsightScheduler = Depends(get_insight_scheduler),
):
    try:
        return scheduler.get_job(job_id, caller.organization_id).to_dict()
    except Exception as e:
        raise to_http_exception(e)


@router.post("", status_code=201)
async def create_job(
    request: CreateJobRequest,
    caller: Caller = Depends(get_caller),
    scheduler: InsightScheduler = Depends(get_insight_scheduler),
):
    """Create a recurring insight job (charges the job creation cost)"""
    data = _job_fields(request)
    try:
        job = await scheduler.create_job(caller.organization_id, caller.user_id, data)
    except Exception as e:
        log.error(f"Error creating scheduled insight job: {str(e)}")
        raise to_http_exception(e)
    return job.to_dict()


@router.patch("/{job_id}")
async def update_job(
    job_id: str,
    request: UpdateJobRequest,
    caller: Caller = Depends(get_caller),
    scheduler: InsightScheduler = Depends(get_insight_scheduler),
):
    try:
        job = await scheduler.update_job(job_id, _job_fields(request), caller.organization_id)
    except Exception as e:
        log.error(f"Error updating scheduled insight job {job_id}: {str(e)}")
        raise to_http_exception(e)
    return job.to_dict()


@router.delete("/{job_id}")
async def delete_job(
    job_id: str,
    caller: Caller = Depends(get_caller),
    scheduler: InsightScheduler = Depends(get_insight_scheduler),
):
    try:
        await scheduler.delete_job(job_id, caller.organization_id)
    except Exception as e:
        log.error(f"Error deleting scheduled insight job {job_id}: {str(e)}")
        raise to_http_exception(e)
    return {"success": True, "id": job_id}


@router.post("/{job_id}/run")
async def run_job_now(
    job_id: str,
    caller: Caller = Depends(get_caller),
    scheduler: InsightScheduler = Depends(get_insight_scheduler),
):
    """Run a job immediately, outside its schedule"""
    try:
        insight_id = await scheduler.run_job_now(job_id, caller.organization_id)
    except Exception as e:
        log.error(f"Error running scheduled insight job {job_id}: {str(e)}")
        raise to_http_exception(e)
    return {"success": True, "insight_id": insight_id}


@router.post("/{job_id}/activate")
async def activate_job(
    job_id: str,
    caller: Caller = Depends(get_caller),
    scheduler: InsightScheduler = Depends(get_insight_scheduler),
):
    try:
        return (await scheduler.activate_job(job_id, caller.organization_id)).to_dict()
    except Exception as e:
        raise to_http_exception(e)


@router.post("/{job_id}/deactivate")
async def deactivate_job(
    job_id: str,
    caller: Caller = Depends(get_caller),
    scheduler: InsightScheduler = Depends(get_insight_scheduler),
):
    try:
        return (await scheduler.deactivate_job(job_id, caller.organization_id)).to_dict()
    except Exception as e:
        raise to_http_exception(e)
