"""
Model router

Maps a requested model onto its backend family adapter and bounds the wait
for each completion with the family's time limit.
"""
import asyncio
from typing import Dict, Optional, Union

from app.config import get_settings
from app.models.insight import BackendFamily, InsightModel
from app.services.exceptions import (
    GenerationError,
    GenerationFailed,
    GenerationTimeout,
    UnsupportedModel,
)
from app.services.llm_service import (
    DeepSeekBackend,
    GenerationOptions,
    HostedChatBackend,
    TextGenerationBackend,
)
from app.utils.logger import log

settings = get_settings()


def resolve_model(model: Union[str, InsightModel, None]) -> InsightModel:
    """Turn a model identifier into an InsightModel or raise UnsupportedModel"""
    if isinstance(model, InsightModel):
        return model
    if model is None:
        model = settings.default_insight_model
    try:
        return InsightModel(str(model).strip().lower())
    except ValueError:
        raise UnsupportedModel(str(model))


class ModelRouter:
    """Dispatches prompts to the backend family serving the requested model"""

    def __init__(
        self,
        backends: Optional[Dict[BackendFamily, TextGenerationBackend]] = None,
        timeouts: Optional[Dict[BackendFamily, float]] = None,
    ):
        self.backends = backends or {
            BackendFamily.DEEPSEEK: DeepSeekBackend(),
            BackendFamily.HOSTED_CHAT: HostedChatBackend(),
        }
        # Analytical DeepSeek calls get the longer ceiling
        self.timeouts = {
            BackendFamily.DEEPSEEK: settings.deepseek_timeout_seconds,
            BackendFamily.HOSTED_CHAT: settings.hosted_chat_timeout_seconds,
        }
        if timeouts:
            self.timeouts.update(timeouts)

    def backend_for(self, model: Union[str, InsightModel, None]) -> TextGenerationBackend:
        insight_model = resolve_model(model)
        backend = self.backends.get(insight_model.family)
        if backend is None:
            raise UnsupportedModel(insight_model.value)
        return backend

    async def generate(
        self,
        prompt: str,
        rag_context: str = "",
        model: Union[str, InsightModel, None] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """
        Generate one completion for the prompt.

        Raises:
            UnsupportedModel: unknown model identifier
            GenerationTimeout: backend exceeded its family time limit
            GenerationFailed: backend error or empty completion
        """
        insight_model = resolve_model(model)
        backend = self.backend_for(insight_model)
        timeout = self.timeouts[insight_model.family]
        options = GenerationOptions(
            model=insight_model,
            temperature=settings.default_temperature if temperature is None else temperature,
            max_tokens=max_tokens or settings.default_max_tokens,
        )

        log.info(f"Routing generation to {backend.name} ({insight_model.value}, timeout {timeout:g}s)")

        try:
            completion = await asyncio.wait_for(
                backend.complete(prompt, options, rag_context=rag_context or ""),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            raise GenerationTimeout(insight_model.value, timeout)
        except GenerationError:
            raise
        except Exception as e:
            raise GenerationFailed(f"Failed to generate analysis: {str(e)}") from e

        if not completion or not completion.strip():
            raise GenerationFailed(f"{insight_model.value} returned an empty completion")

        return completion
