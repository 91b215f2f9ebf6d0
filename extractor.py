"""Извлечение title / year / quality из имени файла (или подписи) по упорядоченным шаблонам."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from contracts import UNKNOWN

# Порядок важен: берётся первый сработавший шаблон.
#   "Movie Name (2023) [1080p].mkv"
#   "Movie.Name.2023.1080p.WEB-DL.x264.mkv"
_PATTERNS = (
    re.compile(r"^(.*?)\s*\((\d{4})\)\s*(?:\[([^\]]+)\])?", re.IGNORECASE),
    re.compile(r"^(.*?)[.\s](\d{4})[.\s]([^\s.]+)", re.IGNORECASE),
)

_EXTENSION_RE = re.compile(r"\.[^/.]+$")


@dataclass(frozen=True)
class ExtractedMetadata:
    title: str
    year: str = UNKNOWN
    quality: str = UNKNOWN


def normalize_title(raw: str) -> str:
    title = raw.replace(".", " ")
    return re.sub(r"\s+", " ", title).strip()


def _match(text: str, extension: str = "") -> Optional[ExtractedMetadata]:
    for pattern in _PATTERNS:
        m = pattern.match(text)
        if not m:
            continue
        title = normalize_title(m.group(1))
        if not title:
            continue
        quality = (m.group(3) or "").strip()
        if extension and m.end(3) == len(text) and quality.lower() == extension.lower():
            # "Title.2023.mkv": после года идёт только расширение файла
            quality = ""
        return ExtractedMetadata(title=title, year=m.group(2), quality=quality or UNKNOWN)
    return None


def strip_extension(filename: str) -> str:
    return _EXTENSION_RE.sub("", filename)


def extract_metadata(filename: str, caption: Optional[str] = None) -> ExtractedMetadata:
    """Разобрать title/year/quality.

    Сначала шаблоны применяются к имени файла, затем к первой строке подписи
    (для синтезированных имён вида ``photo_12.jpg`` подпись информативнее).
    Если ничего не сработало: title = имя файла без расширения, year/quality = "unknown".
    Функция чистая: одинаковый вход всегда даёт одинаковый результат.
    """
    name = (filename or "").strip()
    ext = _EXTENSION_RE.search(name)
    found = _match(name, ext.group(0)[1:] if ext else "")
    if found:
        return found
    if caption:
        first_line = caption.strip().splitlines()[0] if caption.strip() else ""
        found = _match(first_line)
        if found:
            return found
    return ExtractedMetadata(title=normalize_title(strip_extension(name)) or name)
