import logging
import os
from typing import List, Optional

from openai import AsyncOpenAI, OpenAIError

from squirrel.core.domain.errors import ProviderNotConfiguredError, ProviderUnavailableError, UpstreamError
from squirrel.core.interfaces.ports import IAIProvider
from squirrel.core.services import heuristics
from squirrel.core.services.prompts import (
    ANSWER_SYSTEM_PROMPT,
    ANSWER_USER_PROMPT,
    REMOTE_CONTEXT_LIMIT,
    TAG_SYSTEM_PROMPT,
)
from squirrel.core.services.tag_normalizer import MAX_TAGS, clean_tags, parse_tag_response

logger = logging.getLogger(__name__)


class OpenAIProvider(IAIProvider):
    """
    AI provider backed by OpenAI's chat and embeddings APIs.

    Requires: OPENAI_API_KEY environment variable or an explicit api_key.
    """

    name = "openai"

    def __init__(
        self,
        api_key: str = None,
        model_name: str = "gpt-4o-mini",
        embedding_model: str = "text-embedding-3-small",
        max_tokens: int = 500,
    ):
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        self.model_name = model_name
        self.embedding_model = embedding_model
        self.max_tokens = max_tokens
        self.client: Optional[AsyncOpenAI] = None

        if not self.api_key:
            raise ProviderNotConfiguredError("OpenAI API key required. Set OPENAI_API_KEY")

    async def initialize(self) -> None:
        self.client = AsyncOpenAI(api_key=self.api_key)

    async def is_available(self) -> bool:
        return self.client is not None and bool(self.api_key)

    def _ensure_client(self) -> AsyncOpenAI:
        if self.client is None:
            raise ProviderUnavailableError("OpenAI client not initialized. Call initialize() first.")
        return self.client

    async def _chat(self, messages: list, operation: str, max_tokens: int = None, temperature: float = 0.7) -> str:
        client = self._ensure_client()
        try:
            response = await client.chat.completions.create(
                model=self.model_name,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens or self.max_tokens,
            )
        except OpenAIError as e:
            raise UpstreamError(self.name, operation, str(e)) from e
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def generate_embedding(self, text: str) -> List[float]:
        client = self._ensure_client()
        try:
            response = await client.embeddings.create(
                model=self.embedding_model,
                input=text,
                encoding_format="float",
            )
        except OpenAIError as e:
            raise UpstreamError(self.name, "embedding", str(e)) from e
        return list(response.data[0].embedding)

    async def generate_completion(self, prompt: str, context: Optional[str] = None) -> str:
        messages = []
        if context:
            messages.append({"role": "system", "content": f"Context: {context}"})
        messages.append({"role": "user", "content": prompt})
        return await self._chat(messages, "completion")

    async def generate_tags(self, content: str) -> List[str]:
        messages = [
            {"role": "system", "content": TAG_SYSTEM_PROMPT},
            {"role": "user", "content": content[:1000]},
        ]
        try:
            reply = await self._chat(messages, "tags", max_tokens=30, temperature=0.3)
        except UpstreamError as e:
            logger.error("OpenAI tag generation failed, using keyword tags: %s", e)
            return heuristics.keyword_tags(content)

        tags = clean_tags(parse_tag_response(reply))
        if not tags:
            return heuristics.keyword_tags(content)
        return tags[:MAX_TAGS]

    async def answer_question(self, question: str, context: str) -> str:
        messages = [
            {"role": "system", "content": ANSWER_SYSTEM_PROMPT},
            {"role": "user", "content": ANSWER_USER_PROMPT.format(
                context=context[:REMOTE_CONTEXT_LIMIT], question=question)},
        ]
        reply = await self._chat(messages, "answer")
        return reply.strip() or "No response generated."
