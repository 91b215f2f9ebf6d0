"""
Протокол канала-зеркала: две операции, от которых зависит ядро кэша и пересылка.

Реальная реализация: TelegramMirrorClient (telegram_client.py). В тестах используются in-memory заглушки.
"""

from __future__ import annotations

from typing import List, Optional, Protocol, Union, runtime_checkable

from contracts import ChannelMessage
from errors import MIRROR_UNAVAILABLE

UserRef = Union[int, str]


class MirrorUnavailable(Exception):
    """Ошибка обращения к зеркалу (сеть, авторизация, rate limit) с error_code для логов."""

    def __init__(self, message: str, error_code: str = MIRROR_UNAVAILABLE, retry_after: Optional[int] = None):
        super().__init__(message)
        self.error_code = error_code
        self.retry_after = retry_after


@runtime_checkable
class ChannelMirror(Protocol):
    """Источник истории канала и пересылки сообщений."""

    async def fetch_recent_messages(self, channel_id: str, limit: int) -> List[ChannelMessage]:
        """Последние ``limit`` сообщений канала, от новых к старым. При ошибке MirrorUnavailable."""
        ...

    async def forward_message(self, target_user: UserRef, channel_id: str, message_id: int) -> bool:
        """Переслать сообщение ``message_id`` из канала пользователю. При ошибке MirrorUnavailable."""
        ...
