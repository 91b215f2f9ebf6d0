"""
Кэш медиа-сообщений канала: снапшот, TTL, refresh по требованию и поиск.

- Снапшот (contracts.Snapshot) неизменяемый и заменяется целиком одним присваиванием;
  читатели всегда видят либо старый, либо новый снапшот.
- Одновременно выполняется не больше одного refresh: конкурентные вызовы ждут
  тот же in-flight task (asyncio.shield), а не запрашивают зеркало повторно.
- Ошибка зеркала не пробрасывается: старый снапшот остаётся, в лог пишется error_code,
  вызывающий получает RefreshResult(ok=False).
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from adapters import ChannelMirror, MirrorUnavailable
from classifier import RelevanceFilter, classify
from contracts import ClassificationDecision, MediaEntry, Snapshot
from errors import EXTERNAL_API_ERROR

logger = logging.getLogger("media_search.cache")

SEARCH_BIDIRECTIONAL = "bidirectional"
SEARCH_SUBSTRING = "substring"
SEARCH_MODES = (SEARCH_BIDIRECTIONAL, SEARCH_SUBSTRING)

DEFAULT_TTL = timedelta(minutes=30)
DEFAULT_FETCH_LIMIT = 100

_NON_ALNUM_RE = re.compile(r"[\W_]+")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EmptyQueryError(ValueError):
    """Пустой запрос при конфигурации, требующей непустой ``q``."""


@dataclass(frozen=True)
class CacheSettings:
    channel_id: str
    ttl: timedelta = DEFAULT_TTL
    fetch_limit: int = DEFAULT_FETCH_LIMIT
    relevance: Optional[RelevanceFilter] = None
    extract_metadata: bool = True
    search_mode: str = SEARCH_BIDIRECTIONAL
    require_query: bool = False
    bot_username: Optional[str] = None


@dataclass(frozen=True)
class RefreshResult:
    ok: bool
    refreshed: bool  # был ли реальный запрос к зеркалу
    count: int
    captured_at: Optional[datetime]
    error_code: Optional[str] = None
    error: Optional[str] = None


def normalize_text(text: str, mode: str = SEARCH_BIDIRECTIONAL) -> str:
    """casefold; в режиме bidirectional дополнительно убираются все не-буквенно-цифровые символы."""
    folded = (text or "").casefold()
    if mode == SEARCH_BIDIRECTIONAL:
        return _NON_ALNUM_RE.sub("", folded)
    return folded


class CacheManager:
    """Владелец снапшота. Зеркало и часы внедряются (для детерминированных тестов)."""

    def __init__(
        self,
        mirror: ChannelMirror,
        settings: CacheSettings,
        clock: Callable[[], datetime] = utc_now,
    ):
        if settings.search_mode not in SEARCH_MODES:
            raise ValueError(f"search_mode must be one of {SEARCH_MODES}")
        self._mirror = mirror
        self.settings = settings
        self._clock = clock
        self._snapshot = Snapshot()
        self._inflight: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------ #
    # STATE
    # ------------------------------------------------------------------ #

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    @property
    def captured_at(self) -> Optional[datetime]:
        return self._snapshot.captured_at

    @property
    def decisions(self) -> List[ClassificationDecision]:
        return list(self._snapshot.decisions)

    def is_stale(self) -> bool:
        captured_at = self._snapshot.captured_at
        if captured_at is None:
            return True
        return self._clock() - captured_at > self.settings.ttl

    # ------------------------------------------------------------------ #
    # REFRESH
    # ------------------------------------------------------------------ #

    async def ensure_fresh(self, force: bool = False) -> RefreshResult:
        """Refresh, если снапшот устарел (или force=True); иначе no-op."""
        if not force and not self.is_stale():
            snap = self._snapshot
            return RefreshResult(ok=True, refreshed=False, count=len(snap), captured_at=snap.captured_at)
        return await self.refresh()

    async def refresh(self) -> RefreshResult:
        """Обновить снапшот. Если refresh уже идёт, дождаться его результата."""
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.ensure_future(self._refresh_once())
        else:
            logger.debug("Refresh уже выполняется, ожидаю его результат")
        return await asyncio.shield(self._inflight)

    def _build_snapshot(self, messages) -> Snapshot:
        s = self.settings
        decisions = [
            classify(
                msg,
                relevance=s.relevance,
                extract=s.extract_metadata,
                bot_username=s.bot_username,
            )
            for msg in messages
        ]
        entries = tuple(d.entry for d in decisions if d.accepted and d.entry is not None)
        return Snapshot(entries=entries, captured_at=self._clock(), decisions=tuple(decisions))

    async def _refresh_once(self) -> RefreshResult:
        s = self.settings
        previous = self._snapshot
        logger.info("Загрузка последних %s сообщений канала %s", s.fetch_limit, s.channel_id)
        try:
            messages = await self._mirror.fetch_recent_messages(s.channel_id, s.fetch_limit)
            candidate = self._build_snapshot(messages)
        except MirrorUnavailable as e:
            logger.warning(
                "Refresh не удался, оставляю прежний снапшот (%s записей): %s",
                len(previous),
                e,
                extra={"error_code": e.error_code},
            )
            return RefreshResult(
                ok=False,
                refreshed=True,
                count=len(previous),
                captured_at=previous.captured_at,
                error_code=e.error_code,
                error=str(e),
            )
        except Exception as e:
            logger.exception(
                "Непредвиденная ошибка refresh, оставляю прежний снапшот",
                extra={"error_code": EXTERNAL_API_ERROR},
            )
            return RefreshResult(
                ok=False,
                refreshed=True,
                count=len(previous),
                captured_at=previous.captured_at,
                error_code=EXTERNAL_API_ERROR,
                error=str(e),
            )

        self._snapshot = candidate
        rejected = len(candidate.decisions) - len(candidate.entries)
        logger.info(
            "Снапшот обновлён: %s записей из %s сообщений (отклонено %s)",
            len(candidate),
            len(candidate.decisions),
            rejected,
        )
        return RefreshResult(ok=True, refreshed=True, count=len(candidate), captured_at=candidate.captured_at)

    # ------------------------------------------------------------------ #
    # SEARCH
    # ------------------------------------------------------------------ #

    def list_entries(self) -> List[MediaEntry]:
        return list(self._snapshot.entries)

    def _matches(self, normalized_query: str, entry: MediaEntry) -> bool:
        mode = self.settings.search_mode
        for value in (entry.display_name, entry.caption):
            if not value:
                continue
            normalized = normalize_text(value, mode)
            if not normalized:
                continue
            if normalized_query in normalized:
                return True
            if mode == SEARCH_BIDIRECTIONAL and normalized in normalized_query:
                return True
        return False

    def search(self, query: Optional[str]) -> List[MediaEntry]:
        """Поиск по displayName/caption в текущем снапшоте; порядок как в снапшоте.

        Пустой запрос возвращает весь снапшот (или EmptyQueryError при require_query).
        """
        snapshot = self._snapshot
        raw = (query or "").strip()
        if not raw:
            if self.settings.require_query:
                raise EmptyQueryError('Query parameter "q" is required')
            return list(snapshot.entries)
        normalized_query = normalize_text(raw, self.settings.search_mode)
        if not normalized_query:
            return []
        return [e for e in snapshot.entries if self._matches(normalized_query, e)]
