from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class SourceKind(Enum):
    PLAIN = "plain"
    VIDEO = "video"


@dataclass
class VideoDetails:
    """Rich-source extension for notes captured from a video page."""
    video_id: str
    offset_seconds: int = 0
    channel: str = ""
    thumbnail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "video_id": self.video_id,
            "offset_seconds": self.offset_seconds,
            "channel": self.channel,
            "thumbnail": self.thumbnail,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VideoDetails":
        return cls(
            video_id=data["video_id"],
            offset_seconds=int(data.get("offset_seconds", 0)),
            channel=data.get("channel", ""),
            thumbnail=data.get("thumbnail", ""),
        )


@dataclass
class NoteSource:
    """Where a note came from and when it was captured."""
    url: str = ""
    title: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    kind: SourceKind = SourceKind.PLAIN
    video: Optional[VideoDetails] = None

    @property
    def is_video(self) -> bool:
        return self.kind is SourceKind.VIDEO

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "url": self.url,
            "title": self.title,
            "timestamp": format_timestamp(self.timestamp),
            "kind": self.kind.value,
        }
        if self.video is not None:
            data["video"] = self.video.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NoteSource":
        video = data.get("video")
        return cls(
            url=data.get("url", ""),
            title=data.get("title", ""),
            timestamp=parse_timestamp(data["timestamp"]),
            kind=SourceKind(data.get("kind", SourceKind.PLAIN.value)),
            video=VideoDetails.from_dict(video) if video else None,
        )


@dataclass
class Note:
    """
    Represents a single captured note in the system.

    `id`, `created_at` and `updated_at` are left empty by callers and
    filled in by the repository on save.
    """
    content: str
    embedding: List[float] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    source: NoteSource = field(default_factory=NoteSource)
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_rich_source(self) -> bool:
        """True for video notes, whether marked by source kind or by tag."""
        return self.source.is_video or "youtube" in self.tags

    def preview(self, length: int = 200) -> str:
        return self.content[:length]

    def with_updates(self, updates: Dict[str, Any], timestamp: Optional[datetime] = None) -> "Note":
        """
        Returns a copy with `updates` applied and `updated_at` refreshed.

        `id` and `created_at` never change; keys for them are ignored.
        """
        unknown = set(updates) - UPDATABLE_FIELDS - IMMUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update unknown note fields: {', '.join(sorted(unknown))}")

        changes = {k: v for k, v in updates.items() if k in UPDATABLE_FIELDS and v is not None}
        if isinstance(changes.get("source"), dict):
            changes["source"] = NoteSource.from_dict(changes["source"])
        for key in ("embedding", "tags"):
            if key in changes:
                changes[key] = list(changes[key])

        return replace(self, **changes, updated_at=next_timestamp(self.updated_at, timestamp))


UPDATABLE_FIELDS = frozenset(["content", "embedding", "tags", "source"])
IMMUTABLE_FIELDS = frozenset(["id", "created_at", "updated_at"])


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def next_timestamp(previous: Optional[datetime], now: Optional[datetime] = None) -> datetime:
    """A timestamp strictly later than `previous`, even on a coarse clock."""
    now = now or utcnow()
    if previous is not None and now <= previous:
        return previous + timedelta(microseconds=1)
    return now


# Fixed precision keeps the stored strings sortable.
def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
