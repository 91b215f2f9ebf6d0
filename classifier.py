"""
Классификация сообщений канала: индексировать ли сообщение как медиа-файл и с какими полями.

Правила:
- сообщение проходит, если у него есть одно из вложений document / photo / video / audio;
- из нескольких размеров фото берётся самый большой (по площади, затем по размеру файла);
- displayName: имя файла из вложения, иначе ``{kind}_{id}.{ext}`` (photo→jpg, video→mp4, audio→mp3);
  документ без имени не индексируется;
- опциональный фильтр релевантности (для «киношных» каналов): имя или подпись должны
  содержать ключевое слово или год 1900–2099, иначе сообщение исключается целиком.

Классификатор никогда не бросает исключений: аномалии превращаются в отклонённое решение.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

from contracts import (
    MEDIA_AUDIO,
    MEDIA_DOCUMENT,
    MEDIA_PHOTO,
    MEDIA_VIDEO,
    ChannelMessage,
    ClassificationDecision,
    MediaEntry,
    PhotoAttachment,
    PhotoSize,
)
from errors import CLASSIFICATION_ANOMALY
from extractor import extract_metadata

logger = logging.getLogger("media_search.classifier")

DEFAULT_EXTENSIONS = {
    MEDIA_PHOTO: "jpg",
    MEDIA_VIDEO: "mp4",
    MEDIA_AUDIO: "mp3",
}

DEFAULT_RELEVANCE_KEYWORDS: Tuple[str, ...] = (
    "movie",
    "film",
    "480p",
    "720p",
    "1080p",
    "2160p",
    "4k",
    "bluray",
    "brrip",
    "web-dl",
    "webrip",
    "hdrip",
    "dvdrip",
    "hdtv",
    "x264",
    "x265",
    "hevc",
)

# Решения (reason) классификатора
ACCEPTED = "indexed"
REJECT_NO_MEDIA = "no_media"
REJECT_NO_FILE_REFERENCE = "missing_file_reference"
REJECT_PHOTO_WITHOUT_SIZES = "photo_without_sizes"
REJECT_DOCUMENT_WITHOUT_NAME = "document_without_name"
REJECT_NOT_RELEVANT = "not_relevant"
REJECT_MALFORMED = "malformed_attachment"

MATCH_SUBSTRING = "substring"
MATCH_WORD = "word"

_YEAR_RE = re.compile(r"(?<!\d)(?:19|20)\d{2}(?!\d)")


@dataclass(frozen=True)
class RelevanceFilter:
    """Ключевые слова (без учёта регистра) или год 1900–2099 в имени/подписи."""

    keywords: Tuple[str, ...] = DEFAULT_RELEVANCE_KEYWORDS
    match: str = MATCH_SUBSTRING

    @classmethod
    def from_keywords(cls, keywords: Iterable[str], match: str = MATCH_SUBSTRING) -> "RelevanceFilter":
        cleaned = tuple(dict.fromkeys(k.strip().lower() for k in keywords if k and k.strip()))
        return cls(keywords=cleaned, match=match)

    def _keyword_in(self, text: str) -> bool:
        for kw in self.keywords:
            if self.match == MATCH_WORD:
                if re.search(rf"(?<![0-9a-z]){re.escape(kw)}(?![0-9a-z])", text):
                    return True
            elif kw in text:
                return True
        return False

    def is_relevant(self, *texts: Optional[str]) -> bool:
        for text in texts:
            if not text:
                continue
            lowered = text.lower()
            if self._keyword_in(lowered) or _YEAR_RE.search(lowered):
                return True
        return False


def pick_largest_photo(sizes: Sequence[PhotoSize]) -> Optional[PhotoSize]:
    if not sizes:
        return None
    return max(sizes, key=lambda s: (s.width * s.height, s.file_size))


def _reject(message_id: int, reason: str) -> ClassificationDecision:
    return ClassificationDecision(message_id=message_id, accepted=False, reason=reason)


def classify(
    message: ChannelMessage,
    *,
    relevance: Optional[RelevanceFilter] = None,
    extract: bool = False,
    bot_username: Optional[str] = None,
) -> ClassificationDecision:
    """Решение по одному сообщению: принятая MediaEntry или причина отказа."""
    msg_id = message.id
    attachment = message.attachment
    if attachment is None:
        return _reject(msg_id, REJECT_NO_MEDIA)

    try:
        kind = attachment.kind
        if isinstance(attachment, PhotoAttachment):
            best = pick_largest_photo(attachment.sizes)
            if best is None:
                return _reject(msg_id, REJECT_PHOTO_WITHOUT_SIZES)
            file_reference = best.file_reference
            file_name = None
        else:
            file_reference = attachment.file_reference
            file_name = (attachment.file_name or "").strip() or None

        if not file_reference:
            return _reject(msg_id, REJECT_NO_FILE_REFERENCE)

        if file_name:
            display_name = file_name
        elif kind == MEDIA_DOCUMENT:
            return _reject(msg_id, REJECT_DOCUMENT_WITHOUT_NAME)
        else:
            display_name = f"{kind}_{msg_id}.{DEFAULT_EXTENSIONS[kind]}"

        caption = message.caption or None
        if relevance is not None and not relevance.is_relevant(display_name, caption):
            return _reject(msg_id, REJECT_NOT_RELEVANT)

        title = year = quality = None
        if extract:
            meta = extract_metadata(display_name, caption)
            title, year, quality = meta.title, meta.year, meta.quality

        entry = MediaEntry(
            id=msg_id,
            file_reference=str(file_reference),
            media_kind=kind,
            display_name=display_name,
            caption=caption,
            published_at=message.date,
            title=title,
            release_year=year,
            quality_tag=quality,
            link=f"https://t.me/{bot_username}?start=get-{msg_id}" if bot_username else None,
        )
        return ClassificationDecision(message_id=msg_id, accepted=True, reason=ACCEPTED, entry=entry)
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        logger.warning(
            "Вложение сообщения %s в неожиданном формате: %s",
            msg_id,
            e,
            extra={"error_code": CLASSIFICATION_ANOMALY},
        )
        return _reject(msg_id, REJECT_MALFORMED)


def classify_message(
    message: ChannelMessage,
    *,
    relevance: Optional[RelevanceFilter] = None,
    extract: bool = False,
    bot_username: Optional[str] = None,
) -> Optional[MediaEntry]:
    """Ноль или одна MediaEntry на сообщение."""
    return classify(message, relevance=relevance, extract=extract, bot_username=bot_username).entry
