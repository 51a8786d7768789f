"""
Text-generation backends for AI insights

Two backend families:
- DeepSeek (lite/pro): OpenAI-compatible chat endpoint, retrieved context is
  sent in its own context-window message
- Hosted chat (Claude, Gemini): general-purpose chat models behind one
  adapter that re-routes by vendor, retrieved context is prepended to the
  single user message

Each backend turns a prompt into exactly one completion string. Time limits
are enforced by the caller (app.services.model_router).
"""
from dataclasses import dataclass
from typing import Optional

import aiohttp
from anthropic import AsyncAnthropic

from app.config import get_settings
from app.models.insight import InsightModel
from app.services.exceptions import GenerationFailed, UnsupportedModel
from app.utils.logger import log

settings = get_settings()


SYSTEM_PROMPT = (
    "You are an expert e-commerce business analyst. Base every statement on the "
    "data provided, be specific with numbers, and follow the requested output "
    "sections exactly."
)


@dataclass
class GenerationOptions:
    model: InsightModel
    temperature: float = 0.2
    max_tokens: int = 2048


class TextGenerationBackend:
    """Adapter for one backend family"""

    name = "backend"

    async def complete(self, prompt: str, options: GenerationOptions, rag_context: str = "") -> str:
        raise NotImplementedError


class DeepSeekBackend(TextGenerationBackend):
    """
    DeepSeek chat completions

    lite and pro are separate upstream models on the same endpoint.
    """

    name = "deepseek"

    def __init__(self, api_key: Optional[str] = None, api_base: Optional[str] = None):
        self.api_key = api_key if api_key is not None else settings.deepseek_api_key
        self.api_base = (api_base or settings.deepseek_api_base).rstrip("/")
        self.upstream_models = {
            InsightModel.DEEPSEEK_LITE: settings.deepseek_lite_model,
            InsightModel.DEEPSEEK_PRO: settings.deepseek_pro_model,
        }

    def build_messages(self, prompt: str, rag_context: str = "") -> list:
        messages = [{"role": "system", "content": SYSTEM_PROMPT}]
        if rag_context:
            messages.append({
                "role": "system",
                "content": f"Reference knowledge from our knowledge base:\n{rag_context}"
            })
        messages.append({"role": "user", "content": prompt})
        return messages

    def build_payload(self, prompt: str, options: GenerationOptions, rag_context: str = "") -> dict:
        if options.model not in self.upstream_models:
            raise UnsupportedModel(options.model.value)
        return {
            "model": self.upstream_models[options.model],
            "messages": self.build_messages(prompt, rag_context),
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
            "stream": False,
        }

    async def complete(self, prompt: str, options: GenerationOptions, rag_context: str = "") -> str:
        if not self.api_key:
            raise GenerationFailed("DeepSeek API key not configured")

        payload = self.build_payload(prompt, options, rag_context)
        headers = {"Authorization": f"Bearer {self.api_key}"}

        async with aiohttp.ClientSession() as session:
            async with session.post(f"{self.api_base}/chat/completions", json=payload, headers=headers) as response:
                if response.status != 200:
                    body = await response.text()
                    raise GenerationFailed(f"DeepSeek returned HTTP {response.status}: {body[:200]}")
                data = await response.json()

        choices = data.get("choices") or []
        if not choices:
            raise GenerationFailed("DeepSeek returned no choices")
        text = (choices[0].get("message") or {}).get("content") or ""
        log.debug(f"DeepSeek completion: {len(text)} chars ({payload['model']})")
        return text


class HostedChatBackend(TextGenerationBackend):
    """General-purpose chat models, dispatched by vendor"""

    name = "hosted_chat"

    def __init__(
        self,
        anthropic_api_key: Optional[str] = None,
        gemini_api_key: Optional[str] = None,
        gemini_api_base: Optional[str] = None,
    ):
        self.anthropic_api_key = anthropic_api_key if anthropic_api_key is not None else settings.anthropic_api_key
        self.gemini_api_key = gemini_api_key if gemini_api_key is not None else settings.gemini_api_key
        self.gemini_api_base = (gemini_api_base or settings.gemini_api_base).rstrip("/")
        self._anthropic: Optional[AsyncAnthropic] = None

    @staticmethod
    def build_user_content(prompt: str, rag_context: str = "") -> str:
        return f"{rag_context}\n\n{prompt}" if rag_context else prompt

    async def complete(self, prompt: str, options: GenerationOptions, rag_context: str = "") -> str:
        content = self.build_user_content(prompt, rag_context)

        if options.model == InsightModel.CLAUDE:
            return await self._complete_claude(content, options)
        if options.model == InsightModel.GEMINI_PRO:
            return await self._complete_gemini(content, options)
        raise UnsupportedModel(options.model.value)

    async def _complete_claude(self, content: str, options: GenerationOptions) -> str:
        if not self.anthropic_api_key:
            raise GenerationFailed("Anthropic API key not configured")
        if self._anthropic is None:
            self._anthropic = AsyncAnthropic(api_key=self.anthropic_api_key)

        response = await self._anthropic.messages.create(
            model=settings.claude_model,
            max_tokens=options.max_tokens,
            temperature=options.temperature,
            system=SYSTEM_PROMPT,
            messages=[{"role": "user", "content": content}]
        )
        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        log.debug(f"Claude completion: {len(text)} chars")
        return text

    async def _complete_gemini(self, content: str, options: GenerationOptions) -> str:
        if not self.gemini_api_key:
            raise GenerationFailed("Gemini API key not configured")

        url = f"{self.gemini_api_base}/models/{settings.gemini_model}:generateContent"
        payload = {
            "systemInstruction": {"parts": [{"text": SYSTEM_PROMPT}]},
            "contents": [{"role": "user", "parts": [{"text": content}]}],
            "generationConfig": {
                "temperature": options.temperature,
                "maxOutputTokens": options.max_tokens,
                "topK": 40,
                "topP": 0.95,
            },
        }

        async with aiohttp.ClientSession() as session:
            async with session.post(url, json=payload, params={"key": self.gemini_api_key}) as response:
                if response.status != 200:
                    body = await response.text()
                    raise GenerationFailed(f"Gemini returned HTTP {response.status}: {body[:200]}")
                data = await response.json()

        candidates = data.get("candidates") or []
        if not candidates:
            raise GenerationFailed("Gemini returned no candidates")
        parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts)
        log.debug(f"Gemini completion: {len(text)} chars")
        return text
