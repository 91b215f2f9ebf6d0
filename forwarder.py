"""Пересылка файла из канала пользователю. Кэш не используется: id сообщения берётся из результата поиска."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

from adapters import ChannelMirror, MirrorUnavailable, UserRef
from errors import VALIDATION_ERROR

logger = logging.getLogger("media_search.forwarder")

_USERNAME_RE = re.compile(r"^@?[A-Za-z][A-Za-z0-9_]{3,31}$")
_INT_RE = re.compile(r"^-?\d+$")


class ForwardValidationError(ValueError):
    """Отсутствует или некорректно fileId / userId. Всегда ошибка клиента, не ретраится."""

    error_code = VALIDATION_ERROR


@dataclass(frozen=True)
class ForwardRequest:
    message_id: int
    target_user: UserRef


@dataclass(frozen=True)
class ForwardResult:
    success: bool
    error: Optional[str] = None
    error_code: Optional[str] = None


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_message_id(value: Any) -> int:
    if _is_missing(value):
        raise ForwardValidationError("fileId is required")
    if isinstance(value, bool):
        raise ForwardValidationError("fileId must be an integer message id")
    s = str(value).strip()
    if not _INT_RE.match(s) or int(s) <= 0:
        raise ForwardValidationError("fileId must be a positive integer message id")
    return int(s)


def parse_target_user(value: Any) -> UserRef:
    """Числовой id пользователя или @username."""
    if _is_missing(value):
        raise ForwardValidationError("userId is required")
    if isinstance(value, bool):
        raise ForwardValidationError("userId must be a numeric id or @username")
    s = str(value).strip()
    if _INT_RE.match(s):
        return int(s)
    if _USERNAME_RE.match(s):
        return s if s.startswith("@") else f"@{s}"
    raise ForwardValidationError("userId must be a numeric id or @username")


def validate_forward_request(file_id: Any, user_id: Any) -> ForwardRequest:
    return ForwardRequest(message_id=parse_message_id(file_id), target_user=parse_target_user(user_id))


async def forward_file(
    mirror: ChannelMirror,
    channel_id: str,
    file_id: Any,
    user_id: Any,
) -> ForwardResult:
    """Проверить вход и попросить зеркало переслать сообщение.

    ForwardValidationError пробрасывается вызывающему (ответ 400) и до зеркала не доходит.
    Ошибка зеркала возвращается как ForwardResult(success=False) без повторов.
    """
    request = validate_forward_request(file_id, user_id)
    try:
        ok = await mirror.forward_message(request.target_user, channel_id, request.message_id)
    except MirrorUnavailable as e:
        logger.warning(
            "Пересылка сообщения %s пользователю %s не удалась: %s",
            request.message_id,
            request.target_user,
            e,
            extra={"error_code": e.error_code},
        )
        return ForwardResult(success=False, error=str(e) or "Forward failed", error_code=e.error_code)

    if not ok:
        logger.warning("Зеркало отклонило пересылку сообщения %s", request.message_id)
        return ForwardResult(success=False, error="Forward failed")

    logger.info("Сообщение %s переслано пользователю %s", request.message_id, request.target_user)
    return ForwardResult(success=True)
