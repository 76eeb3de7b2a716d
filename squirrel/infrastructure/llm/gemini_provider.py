import asyncio
import logging
import os
import time
from typing import List, Optional

import google.generativeai as genai

from squirrel.core.domain.errors import ProviderNotConfiguredError, ProviderUnavailableError, UpstreamError
from squirrel.core.interfaces.ports import IAIProvider
from squirrel.core.services import heuristics
from squirrel.core.services.prompts import ANSWER_PROMPT, REMOTE_CONTEXT_LIMIT, TAG_PROMPT, with_context
from squirrel.core.services.tag_normalizer import MAX_TAGS, clean_tags, parse_tag_response

logger = logging.getLogger(__name__)


class GeminiProvider(IAIProvider):
    name = "gemini"

    def __init__(
        self,
        api_key: str = None,
        model_name: str = None,
        embedding_model: str = "models/text-embedding-004",
        rate_limit_rpm: int = 25,
    ):
        """
        Args:
            rate_limit_rpm: Requests per minute limit (default: 25 for free tier)
        """
        self.model_name = model_name or os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
        self.embedding_model = embedding_model
        self.api_key = api_key or os.getenv("GEMINI_API_KEY")
        self.rate_limit_rpm = rate_limit_rpm
        self.min_delay = 60.0 / rate_limit_rpm  # seconds between requests
        self.last_request_time = 0.0
        self.model = None

        if not self.api_key:
            raise ProviderNotConfiguredError("Gemini API Key is required. Set GEMINI_API_KEY env var.")

    async def initialize(self) -> None:
        genai.configure(api_key=self.api_key)
        self.model = genai.GenerativeModel(self.model_name)

    async def is_available(self) -> bool:
        return self.model is not None and bool(self.api_key)

    def _ensure_model(self):
        if self.model is None:
            raise ProviderUnavailableError("Gemini model not initialized. Call initialize() first.")
        return self.model

    async def _throttle(self) -> None:
        # Rate limiting: ensure minimum delay between requests
        elapsed = time.monotonic() - self.last_request_time
        if elapsed < self.min_delay:
            await asyncio.sleep(self.min_delay - elapsed)
        self.last_request_time = time.monotonic()

    async def _generate(self, prompt: str, operation: str) -> str:
        model = self._ensure_model()
        await self._throttle()

        try:
            response = await model.generate_content_async(prompt)
            return response.text
        except Exception as e:
            # Check for 404 (Model not found)
            if "404" in str(e):
                logger.error("Gemini model '%s' not found", self.model_name)
            raise UpstreamError(self.name, operation, str(e)) from e

    async def generate_embedding(self, text: str) -> List[float]:
        self._ensure_model()
        await self._throttle()

        try:
            result = await genai.embed_content_async(model=self.embedding_model, content=text)
        except Exception as e:
            raise UpstreamError(self.name, "embedding", str(e)) from e
        return [float(v) for v in result["embedding"]]

    async def generate_completion(self, prompt: str, context: Optional[str] = None) -> str:
        return await self._generate(with_context(prompt, context), "completion")

    async def generate_tags(self, content: str) -> List[str]:
        try:
            reply = await self._generate(TAG_PROMPT.format(content=content[:1000]), "tags")
        except UpstreamError as e:
            logger.error("Gemini tag generation failed, using keyword tags: %s", e)
            return heuristics.keyword_tags(content)

        tags = clean_tags(parse_tag_response(reply))
        if not tags:
            return heuristics.keyword_tags(content)
        return tags[:MAX_TAGS]

    async def answer_question(self, question: str, context: str) -> str:
        prompt = ANSWER_PROMPT.format(context=context[:REMOTE_CONTEXT_LIMIT], question=question)
        reply = await self._generate(prompt, "answer")
        return reply.strip()
