"""
AI insight endpoints
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from app.api.deps import Caller, get_caller, to_http_exception
from app.models.insight import InsightType, InsightStatus, InsightPriority
from app.services.insight_generation_service import (
    AnalysisOptions,
    InsightGenerationService,
    InsightRequest,
    get_insight_generation_service,
)
from app.services.insight_repository import InsightRepository
from app.utils.logger import log

router = APIRouter(prefix="/insights", tags=["insights"])


def get_insight_repository() -> InsightRepository:
    return InsightRepository()


class AnalysisOptionsModel(BaseModel):
    model: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    max_tokens: Optional[int] = Field(default=None, gt=0)
    use_rag: bool = False
    timeframe_days: Optional[int] = Field(default=None, gt=0)
    compare_with_timeframe: Optional[int] = Field(default=None, gt=0)
    custom_prompt: Optional[str] = None


class GenerateInsightRequest(BaseModel):
    type: str
    options: AnalysisOptionsModel = Field(default_factory=AnalysisOptionsModel)
    target_entity_ids: Optional[List[str]] = None
    target_entity_type: Optional[str] = None


class FeedbackRequest(BaseModel):
    feedback: str = Field(..., pattern="^(helpful|not_helpful)$")
    comments: Optional[str] = None


@router.post("/generate", status_code=202)
async def generate_insight(
    request: GenerateInsightRequest,
    caller: Caller = Depends(get_caller),
    service: InsightGenerationService = Depends(get_insight_generation_service),
):
    """
    Start generating an insight

    Returns immediately with the insight in processing status; poll
    GET /insights/{id} for the result.
    """
    try:
        insight_type = InsightType(request.type.lower())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid insight type: {request.type}")

    try:
        insight = await service.generate_insight(InsightRequest(
            insight_type=insight_type,
            user_id=caller.user_id,
            organization_id=caller.organization_id,
            options=AnalysisOptions.from_dict(request.options.model_dump()),
            target_entity_ids=request.target_entity_ids,
            target_entity_type=request.target_entity_type,
        ))
    except Exception as e:
        log.error(f"Insight generation request failed: {str(e)}")
        raise to_http_exception(e)

    return {
        "id": insight.id,
        "status": insight.status,
        "credit_cost": insight.credit_cost,
        "message": "Insight generation started"
    }


@router.get("")
async def list_insights(
    type: Optional[InsightType] = None,
    status: Optional[InsightStatus] = None,
    priority: Optional[InsightPriority] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    sort_by: str = "created_at",
    sort_direction: str = Query("desc", pattern="^(asc|desc)$"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    caller: Caller = Depends(get_caller),
    repository: InsightRepository = Depends(get_insight_repository),
):
    """List the caller's organization insights"""
    insights = repository.find_with_filters(
        caller.organization_id,
        insight_type=type.value if type else None,
        status=status.value if status else None,
        priority=priority.value if priority else None,
        entity_type=entity_type,
        entity_id=entity_id,
        sort_by=sort_by,
        sort_direction=sort_direction,
        limit=limit,
        offset=offset
    )
    return {
        "insights": [i.to_dict() for i in insights],
        "count": len(insights),
        "limit": limit,
        "offset": offset
    }


def _get_owned_insight(repository: InsightRepository, insight_id: str, caller: Caller):
    insight = repository.find_by_id(insight_id)
    if insight is None:
        raise HTTPException(status_code=404, detail="Insight not found")
    if insight.organization_id != caller.organization_id:
        raise HTTPException(status_code=403, detail="You do not have permission to access this insight")
    return insight


@router.get("/{insight_id}")
async def get_insight(
    insight_id: str,
    caller: Caller = Depends(get_caller),
    repository: InsightRepository = Depends(get_insight_repository),
):
    return _get_owned_insight(repository, insight_id, caller).to_dict()


@router.post("/{insight_id}/feedback")
async def submit_feedback(
    insight_id: str,
    request: FeedbackRequest,
    caller: Caller = Depends(get_caller),
    repository: InsightRepository = Depends(get_insight_repository),
):
    """Record whether an insight was helpful"""
    _get_owned_insight(repository, insight_id, caller)
    try:
        insight = repository.update_feedback(insight_id, request.feedback, request.comments)
    except Exception as e:
        raise to_http_exception(e)

    if insight is None:
        raise HTTPException(status_code=404, detail="Insight not found")

    log.info(f"Feedback '{request.feedback}' recorded for insight {insight_id}")
    return insight.to_dict()
