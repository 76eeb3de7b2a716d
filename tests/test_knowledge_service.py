import asyncio
import tempfile
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

import requests

from squirrel.config import AppConfig, ConfigManager
from squirrel.core.domain.errors import NoteNotFoundError, UpstreamError
from squirrel.core.domain.note import Note, NoteSource
from squirrel.core.services import heuristics
from squirrel.core.services.knowledge_service import (
    Answer,
    KnowledgeService,
    SourceRef,
    build_context,
    create_service,
    format_offset,
    is_video_question,
)
from squirrel.core.services.provider_registry import ProviderRegistry

OLLAMA = "squirrel.infrastructure.llm.ollama_provider"


def ollama_reply(text):
    response = MagicMock()
    response.json.return_value = {"response": text}
    return response


class KnowledgeServiceTestCase(unittest.IsolatedAsyncioTestCase):
    """Runs the service against the local SQLite store and a mocked Ollama server."""

    ollama_online = True

    async def asyncSetUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)

        get_patcher = patch(f"{OLLAMA}.requests.get")
        post_patcher = patch(f"{OLLAMA}.requests.post")
        self.mock_get = get_patcher.start()
        self.mock_post = post_patcher.start()
        self.addCleanup(get_patcher.stop)
        self.addCleanup(post_patcher.stop)

        if not self.ollama_online:
            self.mock_get.side_effect = requests.exceptions.ConnectionError("refused")
        self.mock_post.return_value = ollama_reply("rust, ownership, model")

        self.manager = ConfigManager(AppConfig(data_dir=self.tmp.name, embedding_model=None))
        self.service = create_service(self.manager)

    def last_prompt(self):
        return self.mock_post.call_args.kwargs["json"]["prompt"]


class TestCapture(KnowledgeServiceTestCase):
    async def test_capture_embeds_tags_and_persists(self):
        note = await self.service.capture(
            "Rust ownership model explained",
            NoteSource(url="https://doc.rust-lang.org/book", title="The Book"),
        )

        self.assertEqual(note.tags, ["rust", "ownership", "model"])
        self.assertTrue(note.embedding)
        self.assertIsNotNone(note.id)

        stored = await self.service.get(note.id)
        self.assertEqual(stored.tags, ["rust", "ownership", "model"])
        self.assertEqual(stored.source.title, "The Book")

    async def test_empty_content_rejected(self):
        with self.assertRaises(ValueError):
            await self.service.capture("   ")

    async def test_video_clip_source(self):
        note = await self.service.capture_video_clip(
            video_id="abc123",
            offset_seconds=93,
            title="Ownership talk",
            channel="RustConf",
            transcript="Ownership and borrowing in Rust",
        )

        self.assertEqual(note.source.url, "https://www.youtube.com/watch?v=abc123&t=93s")
        self.assertEqual(note.source.title, "Ownership talk [1:33]")
        self.assertEqual(note.source.video.channel, "RustConf")
        self.assertEqual(note.tags, ["rust", "ownership", "model", "youtube"])
        self.assertTrue(note.is_rich_source)
        self.assertEqual(note.content, "Ownership talk\n\nOwnership and borrowing in Rust")

    async def test_failed_capture_saves_nothing(self):
        ai = MagicMock()
        ai.name = "broken"
        ai.initialize = AsyncMock()
        ai.generate_embedding = AsyncMock(return_value=[1.0, 0.0])
        ai.generate_tags = AsyncMock(side_effect=UpstreamError("broken", "tags", "timeout"))
        service = KnowledgeService(ProviderRegistry(self.manager, ai_factory=lambda name, config: ai))

        with self.assertRaises(UpstreamError):
            await service.capture("Will not be stored")

        repo = await service.registry.get_repository()
        self.assertEqual(await repo.count(), 0)

    async def test_embedding_failure_cancels_pending_tagging(self):
        cancelled = asyncio.Event()

        async def slow_tags(text):
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise
            return ["never"]

        ai = MagicMock()
        ai.name = "broken"
        ai.initialize = AsyncMock()
        ai.generate_embedding = AsyncMock(side_effect=UpstreamError("broken", "embedding", "timeout"))
        ai.generate_tags = slow_tags
        service = KnowledgeService(ProviderRegistry(self.manager, ai_factory=lambda name, config: ai))

        with self.assertRaises(UpstreamError):
            await service.capture("Will not be stored")

        await asyncio.wait_for(cancelled.wait(), timeout=1)
        repo = await service.registry.get_repository()
        self.assertEqual(await repo.count(), 0)


class TestAnswer(KnowledgeServiceTestCase):
    async def test_answer_uses_most_similar_notes(self):
        saved = await self.service.capture("Rust ownership model explained")
        self.mock_post.return_value = ollama_reply("  Rust moves values between owners. ")

        result = await self.service.answer("How does rust ownership work?")

        self.assertEqual(result.answer, "Rust moves values between owners.")
        self.assertEqual([s.id for s in result.sources], [saved.id])
        self.assertIn("Note about: rust, ownership, model", self.last_prompt())

    async def test_video_question_only_uses_video_notes(self):
        await self.service.capture("Rust ownership model explained")
        clip = await self.service.capture_video_clip("abc123", 93, "Ownership talk", transcript="Ownership in Rust")

        result = await self.service.answer("Which youtube videos did I save?")

        self.assertEqual([s.id for s in result.sources], [clip.id])
        self.assertTrue(result.sources[0].is_rich_source)
        self.assertIn('YouTube Video: "Ownership talk"', self.last_prompt())

    async def test_answer_to_dict(self):
        await self.service.capture("Rust ownership model explained")

        data = (await self.service.answer("rust?")).to_dict()

        self.assertEqual(set(data), {"answer", "sources"})
        self.assertEqual(set(data["sources"][0]), {"id", "content_preview", "tags", "is_rich_source", "url"})

    async def test_complete(self):
        self.mock_post.return_value = ollama_reply("completed")

        self.assertEqual(await self.service.complete("Finish this"), "completed")


class TestAnswerOffline(KnowledgeServiceTestCase):
    ollama_online = False

    async def test_empty_store_answers_without_sources(self):
        result = await self.service.answer("What did I save about databases?")

        self.assertEqual(result.sources, [])
        self.assertEqual(result.answer, heuristics.NO_INFO_ANSWER)

    async def test_offline_capture_uses_heuristics(self):
        note = await self.service.capture("Postgres vacuum tuning. Postgres autovacuum settings.")

        self.assertEqual(note.tags[0], "postgres")
        self.assertEqual(len(note.embedding), heuristics.HASH_EMBEDDING_DIMENSIONS)
        self.mock_post.assert_not_called()

    async def test_offline_answer_is_extractive(self):
        await self.service.capture("Postgres vacuum tuning. Postgres autovacuum settings.")

        result = await self.service.answer("postgres vacuum?")

        self.assertTrue(result.answer.startswith("From your notes:"))
        self.assertEqual(len(result.sources), 1)


class TestMaintenance(KnowledgeServiceTestCase):
    async def test_browse(self):
        first = await self.service.capture("Rust ownership model explained")
        second = await self.service.capture("Borrow checker errors")

        self.assertEqual([n.id for n in await self.service.recent(1)], [second.id])
        self.assertEqual(await self.service.tags(), ["model", "ownership", "rust"])
        self.assertEqual(len(await self.service.notes_with_tag("rust")), 2)
        self.assertEqual([n.id for n in await self.service.search("borrow")], [second.id])
        self.assertIn(first.id, [n.id for n in await self.service.search("ownership")])

    async def test_edit_reembeds_and_cleans_tags(self):
        note = await self.service.capture("Rust ownership model explained")

        edited = await self.service.edit(note.id, content="Go garbage collection", tags=["Go", "GC!!", "the"])

        self.assertEqual(edited.content, "Go garbage collection")
        self.assertEqual(edited.tags, ["go", "gc"])
        self.assertEqual(edited.embedding, heuristics.hash_embedding("Go garbage collection"))
        self.assertEqual(edited.created_at, note.created_at)

    async def test_edit_unknown_note(self):
        with self.assertRaises(NoteNotFoundError):
            await self.service.edit("missing", tags=["x"])

    async def test_get_unknown_note(self):
        with self.assertRaises(NoteNotFoundError):
            await self.service.get("missing")

    async def test_delete_and_delete_all(self):
        a = await self.service.capture("first note about rust")
        await self.service.capture("second note about rust")
        await self.service.capture("third note about rust")

        await self.service.delete(a.id)
        removed = await self.service.delete_all()

        self.assertEqual(removed, 2)
        self.assertEqual(await self.service.recent(), [])

    async def test_reembed_all(self):
        note = await self.service.capture("Rust ownership model explained")
        repo = await self.service.registry.get_repository()
        await repo.update_note(note.id, {"embedding": [1.0, 0.0]})

        count = await self.service.reembed_all()

        self.assertEqual(count, 1)
        refreshed = await self.service.get(note.id)
        self.assertEqual(len(refreshed.embedding), heuristics.HASH_EMBEDDING_DIMENSIONS)

    async def test_set_config_drops_cached_providers(self):
        first = await self.service.registry.get_ai_provider()

        self.service.set_config(ollama_model="llama3")
        second = await self.service.registry.get_ai_provider()

        self.assertIsNot(first, second)
        self.assertEqual(second.model_name, "llama3")


class TestContextHelpers(unittest.TestCase):
    def make_note(self, content, tags, **source):
        return Note(content=content, embedding=[1.0], tags=tags, source=NoteSource(**source), id=content[:5])

    def test_build_context_keeps_every_note_within_limit(self):
        notes = [self.make_note(f"{i}" * 1000, ["tag"]) for i in range(1, 4)]

        context = build_context(notes, max_chars=300)

        self.assertLessEqual(len(context), 300)
        blocks = context.split("\n\n")
        self.assertEqual(len(blocks), 3)
        for i, block in enumerate(blocks, 1):
            self.assertTrue(block.startswith(f"{i}. Note about: tag"))

    def test_build_context_empty(self):
        self.assertEqual(build_context([]), "")

    def test_video_note_rendering(self):
        note = self.make_note("Talk title\nFirst line\nSecond line", ["youtube", "rust"],
                              url="https://youtu.be/x")

        context = build_context([note])

        self.assertIn('1. YouTube Video: "Talk title"', context)
        self.assertIn("Topic tags: rust", context)
        self.assertIn("Description: First line Second line", context)
        self.assertIn("URL: https://youtu.be/x", context)

    def test_is_video_question(self):
        self.assertTrue(is_video_question("Any VIDEO about rust?"))
        self.assertTrue(is_video_question("youtube talks?"))
        self.assertFalse(is_video_question("What is rust?"))

    def test_format_offset(self):
        self.assertEqual(format_offset(93), "1:33")
        self.assertEqual(format_offset(5), "0:05")
        self.assertEqual(format_offset(3725), "1:02:05")

    def test_source_ref_preview(self):
        ref = SourceRef.from_note(self.make_note("z" * 500, ["a"], url="https://example.com"))

        self.assertEqual(len(ref.content_preview), 200)
        self.assertEqual(ref.url, "https://example.com")
        self.assertFalse(ref.is_rich_source)

    def test_answer_defaults_to_no_sources(self):
        self.assertEqual(Answer(answer="hi").sources, [])


if __name__ == '__main__':
    unittest.main()
