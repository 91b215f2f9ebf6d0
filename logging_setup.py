"""Настройка логирования сервиса поиска.

Логи пишутся в папку `logs/` и ротируются по размеру; сервер дополнительно пишет в stderr.
В каждой записи есть request_id (correlation id запроса API или запуска CLI) и error_code.
"""

from __future__ import annotations

import logging
import sys
import time
import uuid
from contextvars import ContextVar
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

# Контекст request_id для текущего запроса (устанавливается middleware API или CLI).
_request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

LOG_FORMAT = "%(asctime)sZ %(levelname)s [%(request_id)s] %(name)s: %(message)s"


def new_request_id() -> str:
    return uuid.uuid4().hex[:8]


def set_request_id(request_id: Optional[str]) -> None:
    """Установить request_id для текущего контекста (логи)."""
    _request_id_ctx.set(request_id)


def get_request_id() -> Optional[str]:
    return _request_id_ctx.get()


class RequestIdFilter(logging.Filter):
    """Добавляет request_id и error_code в каждую запись лога (из контекста и extra)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = getattr(record, "request_id", None) or _request_id_ctx.get() or "-"
        record.error_code = getattr(record, "error_code", None) or "-"
        return True


class AppLogFormatter(logging.Formatter):
    converter = time.gmtime

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        if getattr(record, "error_code", "-") != "-":
            base += f" error_code={record.error_code}"
        return base


def setup_app_logging(
    logs_dir: Path,
    level: int = logging.INFO,
    console: bool = True,
) -> None:
    """Настроить логирование в `logs/app.log` и `logs/errors.log` с ротацией.

    Args:
        logs_dir: Каталог для логов.
        level: Уровень логирования (по умолчанию INFO).
        console: Дублировать записи в stderr (для сервера).

    Returns:
        None.
    """
    logs_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)

    # Идемпотентность: не добавляем хендлеры повторно.
    for h in root.handlers:
        if isinstance(h, RotatingFileHandler) and getattr(h, "baseFilename", "").endswith("app.log"):
            return

    request_filter = RequestIdFilter()
    formatter = AppLogFormatter(LOG_FORMAT)

    handlers: list[logging.Handler] = []

    app_handler = RotatingFileHandler(
        logs_dir / "app.log",
        maxBytes=2 * 1024 * 1024,
        backupCount=10,
        encoding="utf-8",
    )
    app_handler.setLevel(level)
    handlers.append(app_handler)

    err_handler = RotatingFileHandler(
        logs_dir / "errors.log",
        maxBytes=2 * 1024 * 1024,
        backupCount=10,
        encoding="utf-8",
    )
    err_handler.setLevel(logging.WARNING)
    handlers.append(err_handler)

    if console:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setLevel(level)
        handlers.append(stream_handler)

    for h in handlers:
        h.setFormatter(formatter)
        h.addFilter(request_filter)
        root.addHandler(h)

    # Telethon очень болтлив на INFO.
    logging.getLogger("telethon").setLevel(max(level, logging.WARNING))
