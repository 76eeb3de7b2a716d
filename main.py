#!/usr/bin/env python3
"""
Squirrel CLI - capture notes and ask questions about them.

Usage:
    # Save a snippet
    python main.py save "Rust ownership model explained" --url https://doc.rust-lang.org --title "The Book"

    # Save a video clip with its transcript
    python main.py clip dQw4w9WgXcQ 93 "Talk title" --transcript-file transcript.txt

    # Ask a question
    python main.py ask "What did I save about databases?"

    # Browse
    python main.py search rust
    python main.py recent --limit 5
    python main.py tags

    # Switch provider for this process, then re-embed everything
    python main.py reembed --ai-provider openai
"""

import argparse
import asyncio
import logging
import os
import sys
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Ensure squirrel is in path
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from squirrel.config import AppConfig, ConfigManager
from squirrel.core.domain.errors import SquirrelError
from squirrel.core.domain.note import NoteSource
from squirrel.core.services.knowledge_service import KnowledgeService, create_service


def configure_logging(verbose: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    for name in ("chromadb", "sentence_transformers", "httpx", "urllib3"):
        logging.getLogger(name).setLevel(logging.WARNING)


def print_note(note):
    tags = ", ".join(note.tags) or "-"
    marker = "🎥" if note.is_rich_source else "📝"
    print(f"{marker} {note.id}  [{tags}]")
    print(f"   {note.preview(120).replace(chr(10), ' ')}")
    if note.source.url:
        print(f"   🔗 {note.source.url}")


def print_notes(notes):
    if not notes:
        print("No notes found.")
        return
    for note in notes:
        print_note(note)


async def run(service: KnowledgeService, args) -> int:
    if args.command == "save":
        source = NoteSource(url=args.url, title=args.title)
        note = await service.capture(args.content, source)
        print("✅ Note saved")
        print_note(note)

    elif args.command == "clip":
        transcript = ""
        if args.transcript_file:
            with open(args.transcript_file, "r", encoding="utf-8") as f:
                transcript = f.read()
        note = await service.capture_video_clip(
            video_id=args.video_id,
            offset_seconds=args.offset,
            title=args.title,
            channel=args.channel,
            thumbnail=args.thumbnail,
            transcript=transcript,
        )
        print(f"✅ Video clip saved at {note.source.title}")
        print_note(note)

    elif args.command == "ask":
        result = await service.answer(args.question)
        print(f"\n💬 {result.answer}\n")
        if result.sources:
            print("📚 Sources:")
            for ref in result.sources:
                print(f"  - {ref.id} [{', '.join(ref.tags)}] {ref.url or ''}")

    elif args.command == "search":
        print_notes(await service.search(args.query))

    elif args.command == "recent":
        print_notes(await service.recent(args.limit))

    elif args.command == "tags":
        tags = await service.tags()
        print("\n".join(tags) if tags else "No tags yet.")

    elif args.command == "tag":
        print_notes(await service.notes_with_tag(args.tag))

    elif args.command == "delete":
        await service.delete(args.note_id)
        print(f"🗑️  Deleted {args.note_id}")

    elif args.command == "clear":
        if not args.yes:
            confirm = input("This will delete ALL notes. Are you sure? (y/n): ")
            if confirm.lower() != 'y':
                print("Operation cancelled.")
                return 0
        count = await service.delete_all()
        print(f"🗑️  Deleted {count} notes")

    elif args.command == "reembed":
        count = await service.reembed_all(show_progress=True)
        print(f"✅ Re-embedded {count} notes")

    elif args.command == "config":
        config = service.config_manager.get_config()
        print(f"storage_backend: {config.storage_backend.value}")
        print(f"ai_provider:     {config.ai_provider.value}")
        print(f"data_dir:        {config.data_dir}")
        ai = await service.registry.get_ai_provider()
        repo = await service.registry.get_repository()
        print(f"resolved AI:     {ai.name}")
        print(f"resolved store:  {repo.name}")

    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Personal knowledge store with semantic search",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--ai-provider", choices=["local", "gemini", "openai"],
                        help="Override SQUIRREL_AI_PROVIDER")
    parser.add_argument("--storage-backend", choices=["local", "chroma"],
                        help="Override SQUIRREL_STORAGE_BACKEND")

    sub = parser.add_subparsers(dest="command", required=True)

    save = sub.add_parser("save", help="Save a text snippet")
    save.add_argument("content")
    save.add_argument("--url", default="")
    save.add_argument("--title", default="Untitled")

    clip = sub.add_parser("clip", help="Save a video clip")
    clip.add_argument("video_id")
    clip.add_argument("offset", type=int, help="Playback offset in seconds")
    clip.add_argument("title")
    clip.add_argument("--channel", default="")
    clip.add_argument("--thumbnail", default="")
    clip.add_argument("--transcript-file")

    ask = sub.add_parser("ask", help="Ask a question about your notes")
    ask.add_argument("question")

    search = sub.add_parser("search", help="Keyword search over content and tags")
    search.add_argument("query")

    recent = sub.add_parser("recent", help="Show the newest notes")
    recent.add_argument("--limit", "-l", type=int, default=10)

    sub.add_parser("tags", help="List all tags")

    tag = sub.add_parser("tag", help="Show notes with an exact tag")
    tag.add_argument("tag")

    delete = sub.add_parser("delete", help="Delete one note")
    delete.add_argument("note_id")

    clear = sub.add_parser("clear", help="Delete every note")
    clear.add_argument("--yes", "-y", action="store_true", help="Skip confirmation")

    sub.add_parser("reembed", help="Recompute all embeddings with the current provider")
    sub.add_parser("config", help="Show the active configuration")

    return parser


def main():
    args = build_parser().parse_args()
    configure_logging(args.verbose)

    manager = ConfigManager(AppConfig.from_env())
    overrides = {}
    if args.ai_provider:
        overrides["ai_provider"] = args.ai_provider
    if args.storage_backend:
        overrides["storage_backend"] = args.storage_backend
    if overrides:
        manager.set_config(**overrides)

    service = create_service(manager)
    try:
        return asyncio.run(run(service, args))
    except SquirrelError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
