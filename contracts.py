"""
Контракты данных: сырое сообщение канала-зеркала, вложения и проиндексированные записи.

Вложение сообщения моделируется как tagged union (по одному классу на вид медиа),
чтобы классификатор не пробовал поля через getattr. Сообщения Telethon приводятся к ChannelMessage
в telegram_client.py.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, Optional, Tuple, Union

MEDIA_DOCUMENT = "document"
MEDIA_PHOTO = "photo"
MEDIA_VIDEO = "video"
MEDIA_AUDIO = "audio"
MEDIA_KINDS = (MEDIA_DOCUMENT, MEDIA_PHOTO, MEDIA_VIDEO, MEDIA_AUDIO)

# Значение по умолчанию для title/year/quality, если шаблон не сработал.
UNKNOWN = "unknown"


def iso_utc(dt: Optional[datetime]) -> Optional[str]:
    if not dt:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class PhotoSize:
    """Один вариант фото по разрешению."""

    file_reference: str
    width: int = 0
    height: int = 0
    file_size: int = 0


@dataclass(frozen=True)
class PhotoAttachment:
    kind: ClassVar[str] = MEDIA_PHOTO
    sizes: Tuple[PhotoSize, ...] = ()


@dataclass(frozen=True)
class DocumentAttachment:
    kind: ClassVar[str] = MEDIA_DOCUMENT
    file_reference: str
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    file_size: int = 0


@dataclass(frozen=True)
class VideoAttachment:
    kind: ClassVar[str] = MEDIA_VIDEO
    file_reference: str
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    file_size: int = 0


@dataclass(frozen=True)
class AudioAttachment:
    kind: ClassVar[str] = MEDIA_AUDIO
    file_reference: str
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    file_size: int = 0


Attachment = Union[DocumentAttachment, PhotoAttachment, VideoAttachment, AudioAttachment]


@dataclass(frozen=True)
class ChannelMessage:
    """Сообщение канала в том виде, в котором его отдаёт зеркало (не более одного вложения)."""

    id: int
    date: Optional[datetime] = None
    caption: Optional[str] = None
    attachment: Optional[Attachment] = None


@dataclass(frozen=True)
class MediaEntry:
    """Одно проиндексированное медиа-сообщение, которое видит клиент API."""

    id: int
    file_reference: str
    media_kind: str
    display_name: str
    caption: Optional[str] = None
    published_at: Optional[datetime] = None
    # Заполняются только при включённом извлечении метаданных
    title: Optional[str] = None
    release_year: Optional[str] = None
    quality_tag: Optional[str] = None
    link: Optional[str] = None


@dataclass(frozen=True)
class ClassificationDecision:
    """Решение классификатора по одному сообщению (для /debug)."""

    message_id: int
    accepted: bool
    reason: str
    entry: Optional[MediaEntry] = None


@dataclass(frozen=True)
class Snapshot:
    """Текущее состояние кэша. Заменяется целиком при refresh, никогда не мутируется."""

    entries: Tuple[MediaEntry, ...] = ()
    captured_at: Optional[datetime] = None
    decisions: Tuple[ClassificationDecision, ...] = field(default=(), compare=False)

    def __len__(self) -> int:
        return len(self.entries)


def media_entry_to_dict(entry: MediaEntry) -> Dict[str, Any]:
    """MediaEntry -> JSON-словарь ответа API (camelCase, как ожидают клиенты)."""
    out: Dict[str, Any] = {
        "id": entry.id,
        "fileReference": entry.file_reference,
        "mediaKind": entry.media_kind,
        "displayName": entry.display_name,
        "caption": entry.caption,
        "publishedAt": iso_utc(entry.published_at),
    }
    if entry.title is not None:
        out["title"] = entry.title
        out["releaseYear"] = entry.release_year
        out["qualityTag"] = entry.quality_tag
    if entry.link:
        out["link"] = entry.link
    return out


def decision_to_dict(decision: ClassificationDecision) -> Dict[str, Any]:
    entry = decision.entry
    return {
        "messageId": decision.message_id,
        "accepted": decision.accepted,
        "reason": decision.reason,
        "mediaKind": entry.media_kind if entry else None,
        "displayName": entry.display_name if entry else None,
    }
