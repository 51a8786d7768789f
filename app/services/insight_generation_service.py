"""
Insight Generation Service

Top-level insight pipeline:
1. Price the request and check the organization's credits
2. Create the insight in PROCESSING status
3. Deduct credits against the new insight id
4. In a background task: gather data -> build prompt -> retrieve context
   (optional) -> generate -> parse -> mark COMPLETED

Anything that goes wrong in step 4 marks the insight FAILED with the error in
its summary. The caller already holds the PROCESSING record, so those errors
are never raised back to it. Deducted credits are not refunded on failure.
"""
import asyncio
import time
from dataclasses import dataclass, field, asdict
from functools import lru_cache
from typing import Dict, List, Optional, Set

from app.config import get_settings
from app.models.insight import Insight, InsightType, InsightStatus, InsightPriority, InsightSource
from app.services.credit_service import CreditService, calculate_insight_credit_cost
from app.services.exceptions import InsufficientCredits
from app.services.insight_data_service import InsightDataService
from app.services.insight_parser import parse, default_title
from app.services.insight_prompts import build_prompt
from app.services.insight_repository import InsightRepository
from app.services.model_router import ModelRouter
from app.services.rag_service import RagService
from app.utils.logger import log

settings = get_settings()


PLACEHOLDER_SUMMARY = "Generating insight..."


@dataclass
class AnalysisOptions:
    """Generation options; stored verbatim on scheduled jobs"""
    model: str = field(default_factory=lambda: settings.default_insight_model)
    temperature: float = field(default_factory=lambda: settings.default_temperature)
    max_tokens: int = field(default_factory=lambda: settings.default_max_tokens)
    use_rag: bool = False
    timeframe_days: int = field(default_factory=lambda: settings.default_timeframe_days)
    compare_with_timeframe: Optional[int] = None
    custom_prompt: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "AnalysisOptions":
        data = data or {}
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__ and v is not None}
        return cls(**known)

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class InsightRequest:
    insight_type: InsightType
    user_id: str
    organization_id: str
    options: AnalysisOptions = field(default_factory=AnalysisOptions)
    target_entity_ids: Optional[List[str]] = None
    target_entity_type: Optional[str] = None
    source: InsightSource = InsightSource.ON_DEMAND


class InsightGenerationService:
    """Orchestrates credit-gated, asynchronous insight generation"""

    def __init__(
        self,
        insight_repository: Optional[InsightRepository] = None,
        credit_service: Optional[CreditService] = None,
        data_service: Optional[InsightDataService] = None,
        rag_service: Optional[RagService] = None,
        model_router: Optional[ModelRouter] = None,
    ):
        self.insight_repository = insight_repository or InsightRepository()
        self.credit_service = credit_service or CreditService()
        self.data_service = data_service or InsightDataService()
        self.rag_service = rag_service or RagService()
        self.model_router = model_router or ModelRouter()
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def generate_insight(self, request: InsightRequest) -> Insight:
        """
        Accept an insight request.

        Returns the PROCESSING insight as soon as it exists and credits are
        deducted; the analysis itself continues in the background.

        Raises:
            InsufficientCredits: no record is created
            PersistenceFailure: the initial record could not be created
        """
        insight_type = InsightType(request.insight_type)
        options = request.options
        credit_cost = calculate_insight_credit_cost(insight_type, options.model, options.use_rag)

        has_credits = await self.credit_service.has_available_credits(request.organization_id, credit_cost)
        if not has_credits:
            log.warning(f"Insufficient credits for {request.organization_id}: {credit_cost} required")
            raise InsufficientCredits(request.organization_id, credit_cost)

        insight = self.insight_repository.create_insight(
            title=default_title(insight_type),
            summary=PLACEHOLDER_SUMMARY,
            insight_type=insight_type.value,
            status=InsightStatus.PROCESSING.value,
            priority=InsightPriority.MEDIUM.value,
            source=InsightSource(request.source).value,
            model=str(options.model),
            user_id=request.user_id,
            organization_id=request.organization_id,
            metrics=[],
            recommendations=[],
            visualizations=[],
            related_entity_ids=request.target_entity_ids,
            related_entity_type=request.target_entity_type,
            credit_cost=credit_cost,
        )

        try:
            await self.credit_service.use_credits(
                request.organization_id,
                credit_cost,
                f"Generated {insight_type.label} Insight",
                insight.id
            )
        except InsufficientCredits:
            # Balance moved between the check and the deduction; nothing was charged
            log.warning(f"Credits for {request.organization_id} ran out before deduction, discarding insight {insight.id}")
            self.insight_repository.delete_insight(insight.id)
            raise
        except Exception as e:
            self._record_failure(insight.id, str(e))
            raise

        task = asyncio.create_task(self._process_insight(insight.id, insight_type, request))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

        log.info(f"Accepted {insight_type.value} insight {insight.id} for {request.organization_id} ({credit_cost} credits)")
        return insight

    async def _process_insight(self, insight_id: str, insight_type: InsightType, request: InsightRequest) -> None:
        """Background phase; its only outcome is a COMPLETED or FAILED write"""
        options = request.options
        try:
            context_data = await self.data_service.gather(
                insight_type,
                request.organization_id,
                options.timeframe_days,
                request.target_entity_ids,
                request.target_entity_type,
                options.compare_with_timeframe,
            )

            prompt = build_prompt(insight_type, context_data, options.custom_prompt)

            rag_context = ""
            if options.use_rag:
                rag_context = await self.rag_service.retrieve_context(prompt)

            started = time.monotonic()
            completion = await self.model_router.generate(
                prompt,
                rag_context,
                model=options.model,
                temperature=options.temperature,
                max_tokens=options.max_tokens,
            )
            analysis_time_ms = int((time.monotonic() - started) * 1000)

            parsed = parse(completion, insight_type)

            fields = parsed.to_update()
            fields.update({
                "status": InsightStatus.COMPLETED.value,
                "analysis_time_ms": analysis_time_ms,
                "raw_analysis_data": completion,
            })
            updated = self.insight_repository.update_insight(
                insight_id, fields, expected_status=InsightStatus.PROCESSING.value
            )
            if updated is None:
                log.warning(f"Insight {insight_id} was not open for completion")
                return

            log.info(
                f"Completed insight {insight_id}: '{parsed.title}' "
                f"({parsed.priority.value}, {len(parsed.metrics)} metrics, {analysis_time_ms}ms)"
            )

        except Exception as e:
            log.error(f"Error processing insight {insight_id}: {str(e)}")
            self._record_failure(insight_id, str(e))

    def _record_failure(self, insight_id: str, message: str) -> None:
        try:
            self.insight_repository.update_insight(
                insight_id,
                {
                    "status": InsightStatus.FAILED.value,
                    "summary": f"Error generating insight: {message}",
                },
                expected_status=InsightStatus.PROCESSING.value
            )
        except Exception as e:
            log.error(f"Error updating insight failure for {insight_id}: {str(e)}")

    async def drain(self) -> None:
        """Wait for every background insight task started so far"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


@lru_cache()
def get_insight_generation_service() -> InsightGenerationService:
    return InsightGenerationService()
