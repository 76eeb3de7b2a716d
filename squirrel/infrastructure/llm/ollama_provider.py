import asyncio
import logging
from typing import List, Optional, Set

import requests

from squirrel.core.domain.errors import ProviderUnavailableError, UpstreamError
from squirrel.core.interfaces.ports import IAIProvider, IEmbeddingProvider
from squirrel.core.services import heuristics
from squirrel.core.services.prompts import LOCAL_ANSWER_PROMPT, LOCAL_CONTEXT_LIMIT, TAG_PROMPT, with_context
from squirrel.core.services.tag_normalizer import MAX_TAGS, clean_tags, parse_tag_response

logger = logging.getLogger(__name__)


class OllamaLocalProvider(IAIProvider):
    """
    On-device AI provider: Ollama for text, sentence-transformers for vectors.

    Nothing here needs the internet. When the Ollama server or the embedding
    model is missing, the provider keeps working on heuristics and records
    which capabilities were degraded.
    """

    name = "local"

    def __init__(
        self,
        model_name: str = "gemma3:4b",
        base_url: str = "http://localhost:11434",
        embedding_model: Optional[str] = "sentence-transformers/all-MiniLM-L6-v2",
        embedder: Optional[IEmbeddingProvider] = None,
        timeout: float = 120.0,
    ):
        self.model_name = model_name
        self.base_url = base_url.rstrip("/")
        self.api_url = f"{self.base_url}/api/generate"
        self.embedding_model = embedding_model
        self.embedder = embedder
        self.timeout = timeout
        self.model_ready = False
        self.degraded_capabilities: Set[str] = set()

    async def initialize(self) -> None:
        if self.embedder is None and self.embedding_model:
            try:
                self.embedder = await asyncio.to_thread(self._load_embedder)
            except Exception as e:
                logger.warning("Local embedding model '%s' unavailable, using hash embeddings: %s",
                               self.embedding_model, e)
                self.embedder = None

        self.model_ready = await asyncio.to_thread(self._ping)
        if not self.model_ready:
            logger.warning("Ollama not reachable at %s, text generation will use heuristics", self.base_url)

    def _load_embedder(self) -> IEmbeddingProvider:
        from squirrel.infrastructure.embedding.local_embedder import LocalEmbeddingProvider
        return LocalEmbeddingProvider(model_name=self.embedding_model)

    def _ping(self) -> bool:
        try:
            response = requests.get(f"{self.base_url}/api/tags", timeout=5)
            response.raise_for_status()
            return True
        except requests.exceptions.RequestException:
            return False

    async def is_available(self) -> bool:
        return self.model_ready

    def _generate(self, prompt: str) -> str:
        payload = {
            "model": self.model_name,
            "prompt": prompt,
            "stream": False
        }

        try:
            response = requests.post(self.api_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
            return data.get("response", "")
        except requests.exceptions.RequestException as e:
            raise UpstreamError(self.name, "generate", f"Ollama connection failed: {e}") from e

    def _degrade(self, capability: str) -> None:
        if capability not in self.degraded_capabilities:
            logger.info("Local provider using heuristic for %s", capability)
        self.degraded_capabilities.add(capability)

    async def generate_embedding(self, text: str) -> List[float]:
        if self.embedder is not None:
            try:
                return await asyncio.to_thread(self.embedder.embed, text)
            except Exception as e:
                logger.error("Local embedding failed: %s", e)
        self._degrade("embedding")
        return heuristics.hash_embedding(text)

    async def generate_completion(self, prompt: str, context: Optional[str] = None) -> str:
        if not self.model_ready:
            raise ProviderUnavailableError(f"Ollama model '{self.model_name}' is not available")
        return await asyncio.to_thread(self._generate, with_context(prompt, context))

    async def generate_tags(self, content: str) -> List[str]:
        if self.model_ready:
            try:
                reply = await asyncio.to_thread(self._generate, TAG_PROMPT.format(content=content[:500]))
                tags = clean_tags(parse_tag_response(reply))
                if tags:
                    return tags[:MAX_TAGS]
            except UpstreamError as e:
                logger.error("Tag generation failed: %s", e)
        self._degrade("tags")
        return heuristics.keyword_tags(content)

    async def answer_question(self, question: str, context: str) -> str:
        if self.model_ready:
            prompt = LOCAL_ANSWER_PROMPT.format(context=context[:LOCAL_CONTEXT_LIMIT], question=question)
            try:
                reply = await asyncio.to_thread(self._generate, prompt)
                return reply.strip()
            except UpstreamError as e:
                logger.error("Question answering failed: %s", e)
        self._degrade("answer")
        return heuristics.extractive_answer(question, context)
