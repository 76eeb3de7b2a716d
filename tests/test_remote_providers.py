import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from openai import OpenAIError

from squirrel.core.domain.errors import ProviderNotConfiguredError, ProviderUnavailableError, UpstreamError
from squirrel.infrastructure.llm.gemini_provider import GeminiProvider
from squirrel.infrastructure.llm.openai_provider import OpenAIProvider

GEMINI = "squirrel.infrastructure.llm.gemini_provider"
OPENAI = "squirrel.infrastructure.llm.openai_provider"


class TestGeminiProvider(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        patcher = patch(f"{GEMINI}.genai")
        self.mock_genai = patcher.start()
        self.addCleanup(patcher.stop)

        self.model = MagicMock()
        self.model.generate_content_async = AsyncMock()
        self.mock_genai.GenerativeModel.return_value = self.model
        self.mock_genai.embed_content_async = AsyncMock(return_value={"embedding": [0.5, 0.5]})

        # High limit so the throttle never sleeps
        self.provider = GeminiProvider(api_key="test-key", model_name="gemini-test", rate_limit_rpm=60000)
        await self.provider.initialize()

    def reply(self, text):
        response = MagicMock()
        response.text = text
        self.model.generate_content_async.return_value = response

    def test_missing_key_raises_not_configured(self):
        with patch.dict("os.environ", {}, clear=True):
            with self.assertRaises(ProviderNotConfiguredError):
                GeminiProvider(api_key=None)

    async def test_initialize_configures_sdk(self):
        self.mock_genai.configure.assert_called_once_with(api_key="test-key")
        self.mock_genai.GenerativeModel.assert_called_once_with("gemini-test")
        self.assertTrue(await self.provider.is_available())

    async def test_uninitialized_provider_is_unavailable(self):
        provider = GeminiProvider(api_key="test-key", rate_limit_rpm=60000)
        with self.assertRaises(ProviderUnavailableError):
            await provider.generate_completion("hi")
        with self.assertRaises(ProviderUnavailableError):
            await provider.generate_embedding("hi")

    async def test_embedding(self):
        embedding = await self.provider.generate_embedding("hello")

        self.assertEqual(embedding, [0.5, 0.5])
        self.mock_genai.embed_content_async.assert_awaited_once_with(
            model="models/text-embedding-004", content="hello")

    async def test_embedding_failure_is_upstream_error(self):
        cause = RuntimeError("quota")
        self.mock_genai.embed_content_async.side_effect = cause

        with self.assertRaises(UpstreamError) as ctx:
            await self.provider.generate_embedding("hello")

        self.assertIs(ctx.exception.__cause__, cause)
        self.assertEqual(ctx.exception.operation, "embedding")

    async def test_tags_are_cleaned_and_capped(self):
        self.reply("Keywords: Python, asyncio, the, Event Loops, coroutines, tasks, futures")

        tags = await self.provider.generate_tags("Python asyncio basics")

        self.assertEqual(tags, ["python", "asyncio", "event-loops", "coroutines", "tasks"])

    async def test_tag_failure_falls_back_to_keywords(self):
        self.model.generate_content_async.side_effect = RuntimeError("500")

        with self.assertLogs(GEMINI, level="ERROR"):
            tags = await self.provider.generate_tags("Gardening tomatoes and gardening peppers")

        self.assertEqual(tags[0], "gardening")

    async def test_answer_uses_truncated_context(self):
        self.reply(" The answer. ")

        answer = await self.provider.answer_question("Why?", "y" * 5000)

        self.assertEqual(answer, "The answer.")
        prompt = self.model.generate_content_async.call_args.args[0]
        self.assertIn("y" * 4000, prompt)
        self.assertNotIn("y" * 4001, prompt)

    async def test_answer_failure_propagates(self):
        self.model.generate_content_async.side_effect = RuntimeError("404 model not found")

        with self.assertLogs(GEMINI, level="ERROR"):
            with self.assertRaises(UpstreamError):
                await self.provider.answer_question("Why?", "context")


class TestOpenAIProvider(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.provider = OpenAIProvider(api_key="sk-test")
        self.client = MagicMock()
        self.client.chat.completions.create = AsyncMock()
        self.client.embeddings.create = AsyncMock()
        self.provider.client = self.client

    def reply(self, text):
        message = MagicMock()
        message.content = text
        choice = MagicMock()
        choice.message = message
        self.client.chat.completions.create.return_value = MagicMock(choices=[choice])

    def test_missing_key_raises_not_configured(self):
        with patch.dict("os.environ", {}, clear=True):
            with self.assertRaises(ProviderNotConfiguredError):
                OpenAIProvider(api_key=None)

    @patch(f"{OPENAI}.AsyncOpenAI")
    async def test_initialize_creates_client(self, mock_client_cls):
        provider = OpenAIProvider(api_key="sk-test")
        self.assertFalse(await provider.is_available())

        await provider.initialize()

        mock_client_cls.assert_called_once_with(api_key="sk-test")
        self.assertTrue(await provider.is_available())

    async def test_uninitialized_provider_is_unavailable(self):
        provider = OpenAIProvider(api_key="sk-test")
        with self.assertRaises(ProviderUnavailableError):
            await provider.generate_embedding("hi")

    async def test_embedding(self):
        data = MagicMock()
        data.embedding = [0.1, 0.2]
        self.client.embeddings.create.return_value = MagicMock(data=[data])

        embedding = await self.provider.generate_embedding("hello")

        self.assertEqual(embedding, [0.1, 0.2])
        self.client.embeddings.create.assert_awaited_once_with(
            model="text-embedding-3-small", input="hello", encoding_format="float")

    async def test_api_error_is_upstream_error(self):
        cause = OpenAIError("rate limited")
        self.client.chat.completions.create.side_effect = cause

        with self.assertRaises(UpstreamError) as ctx:
            await self.provider.generate_completion("hello")

        self.assertIs(ctx.exception.__cause__, cause)
        self.assertEqual(ctx.exception.provider, "openai")

    async def test_completion_sends_context_as_system_message(self):
        self.reply("ok")

        await self.provider.generate_completion("Summarize", context="notes")

        messages = self.client.chat.completions.create.call_args.kwargs["messages"]
        self.assertEqual(messages[0], {"role": "system", "content": "Context: notes"})
        self.assertEqual(messages[1], {"role": "user", "content": "Summarize"})

    async def test_tags(self):
        self.reply("rust, Ownership, borrow checker")

        tags = await self.provider.generate_tags("Rust ownership model explained")

        self.assertEqual(tags, ["rust", "ownership", "borrow-checker"])
        kwargs = self.client.chat.completions.create.call_args.kwargs
        self.assertEqual(kwargs["max_tokens"], 30)

    async def test_tag_failure_falls_back_to_keywords(self):
        self.client.chat.completions.create.side_effect = OpenAIError("down")

        with self.assertLogs(OPENAI, level="ERROR"):
            tags = await self.provider.generate_tags("Sourdough starter feeding schedule")

        self.assertEqual(tags, ["sourdough", "starter", "feeding", "schedule"])

    async def test_empty_tag_reply_falls_back_to_keywords(self):
        self.reply("")

        tags = await self.provider.generate_tags("Sourdough starter")

        self.assertEqual(tags, ["sourdough", "starter"])

    async def test_empty_answer_has_placeholder(self):
        self.reply("   ")

        self.assertEqual(await self.provider.answer_question("Why?", "ctx"), "No response generated.")


if __name__ == '__main__':
    unittest.main()
