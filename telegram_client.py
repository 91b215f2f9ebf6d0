"""
Канал-зеркало на Telethon.

- Подключение и авторизация (бот-токен или пользовательская сессия с кодом из .env)
- Ограниченная выборка последних N сообщений канала
- Пересылка сообщения пользователю
- Маппинг telethon.Message -> contracts.ChannelMessage и ошибок Telethon -> MirrorUnavailable
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import struct
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Dict, List, Optional, Tuple

from telethon import TelegramClient, utils
from telethon.errors import (
    AuthKeyError,
    FloodWaitError,
    RPCError,
    SessionPasswordNeededError,
    UnauthorizedError,
)
from telethon.tl.types import MessageMediaDocument, MessageMediaPhoto

from adapters import MirrorUnavailable, UserRef
from contracts import (
    Attachment,
    AudioAttachment,
    ChannelMessage,
    DocumentAttachment,
    PhotoAttachment,
    PhotoSize,
    VideoAttachment,
)
from errors import AUTH_ERROR, CLASSIFICATION_ANOMALY, EXTERNAL_API_ERROR, NETWORK_ERROR, RATE_LIMIT

logger = logging.getLogger("media_search.mirror")

# Ссылки на посты/каналы: https://t.me/channelname или https://t.me/channelname/123
_TELEGRAM_LINK_RE = re.compile(
    r"^(?:https?://)?(?:t\.me|telegram\.me|telegram\.dog)/([a-zA-Z0-9_]+)(?:/(\d+))?/?$",
    re.IGNORECASE,
)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_telegram_link(link: str) -> Optional[Tuple[str, Optional[int]]]:
    """Извлечь из ссылки t.me/... username канала и опционально номер поста.

    Args:
        link: Ссылка вида https://t.me/moviesdb/36 или t.me/channelname.

    Returns:
        Кортеж (username_канала, post_id или None) или None, если не ссылка.
    """
    s = (link or "").strip()
    m = _TELEGRAM_LINK_RE.match(s)
    if not m:
        return None
    username = m.group(1)
    post_id = int(m.group(2)) if m.group(2) else None
    return (username, post_id)


def channel_identifier_from_input(identifier: str) -> str:
    """Нормализовать ввод: ссылка -> @username; иначе как есть (@username или числовой id)."""
    parsed = parse_telegram_link(identifier)
    if parsed:
        username, _ = parsed
        return username if username.startswith("@") else f"@{username}"
    return (identifier or "").strip()


def _photo_size_bytes(size: Any) -> int:
    if hasattr(size, "size") and isinstance(size.size, int):
        return size.size
    if hasattr(size, "sizes") and size.sizes:
        return max(size.sizes)
    if hasattr(size, "bytes") and size.bytes:
        return len(size.bytes)
    return 0


def _photo_attachment(photo: Any) -> PhotoAttachment:
    """Варианты фото по разрешению.

    Ссылка на вариант: ``{id}_{access_hash}_{type}``. Этого достаточно, чтобы собрать
    InputPhotoFileLocation (file_reference берётся из свежего сообщения).
    """
    base_ref = f"{int(photo.id)}_{int(photo.access_hash)}"
    sizes: List[PhotoSize] = []
    for s in getattr(photo, "sizes", None) or []:
        width = int(getattr(s, "w", 0) or 0)
        height = int(getattr(s, "h", 0) or 0)
        size_type = getattr(s, "type", "")
        if not width or not height or not size_type:
            # stripped/path-превью без размеров не являются самостоятельным вариантом
            continue
        sizes.append(
            PhotoSize(
                file_reference=f"{base_ref}_{size_type}",
                width=width,
                height=height,
                file_size=_photo_size_bytes(s),
            )
        )
    return PhotoAttachment(sizes=tuple(sizes))


def _file_kwargs(msg: Any, document: Any) -> Dict[str, Any]:
    f = getattr(msg, "file", None)
    return {
        "file_reference": utils.pack_bot_file_id(document) or str(getattr(document, "id", "")),
        "file_name": getattr(f, "name", None) if f else None,
        "mime_type": getattr(document, "mime_type", None),
        "file_size": int(getattr(document, "size", 0) or 0),
    }


def _attachment(msg: Any) -> Optional[Attachment]:
    """Видео и аудио проверяются раньше документа (они тоже document)."""
    media = getattr(msg, "media", None)
    if isinstance(media, MessageMediaPhoto) and media.photo is not None:
        return _photo_attachment(media.photo)
    if not isinstance(media, MessageMediaDocument):
        # превью ссылок, опросы, гео и т.п. не являются файлами канала
        return None
    if getattr(msg, "video", None) is not None:
        return VideoAttachment(**_file_kwargs(msg, msg.video))
    if getattr(msg, "audio", None) is not None:
        return AudioAttachment(**_file_kwargs(msg, msg.audio))
    if getattr(msg, "document", None) is not None:
        return DocumentAttachment(**_file_kwargs(msg, msg.document))
    return None


def message_to_channel_message(msg: Any) -> ChannelMessage:
    """telethon Message -> ChannelMessage.

    Вложение в неожиданном формате не роняет выборку: сообщение остаётся без вложения
    (классификатор его не проиндексирует), в лог пишется CLASSIFICATION_ANOMALY.
    """
    try:
        attachment = _attachment(msg)
    except (AttributeError, TypeError, ValueError, struct.error) as e:
        logger.warning(
            "Не удалось разобрать вложение сообщения %s: %s",
            getattr(msg, "id", None),
            e,
            extra={"error_code": CLASSIFICATION_ANOMALY},
        )
        attachment = None

    date = getattr(msg, "date", None)
    if date is not None and date.tzinfo is None:
        date = date.replace(tzinfo=timezone.utc)

    return ChannelMessage(
        id=int(msg.id),
        date=date,
        caption=(getattr(msg, "message", None) or None),
        attachment=attachment,
    )


def mirror_error(exc: BaseException, action: str) -> MirrorUnavailable:
    """Telethon/сетевое исключение -> MirrorUnavailable с error_code."""
    if isinstance(exc, MirrorUnavailable):
        return exc
    if isinstance(exc, FloodWaitError):
        return MirrorUnavailable(f"{action}: flood wait {exc.seconds}s", RATE_LIMIT, retry_after=int(exc.seconds))
    if isinstance(exc, (UnauthorizedError, AuthKeyError)):
        return MirrorUnavailable(f"{action}: unauthorized ({exc})", AUTH_ERROR)
    if isinstance(exc, asyncio.TimeoutError):
        return MirrorUnavailable(f"{action}: timeout", NETWORK_ERROR)
    if isinstance(exc, (ConnectionError, OSError)):
        return MirrorUnavailable(f"{action}: {exc}", NETWORK_ERROR)
    if isinstance(exc, RPCError):
        return MirrorUnavailable(f"{action}: {exc}", EXTERNAL_API_ERROR)
    return MirrorUnavailable(f"{action}: {exc}", EXTERNAL_API_ERROR)


class TelegramMirrorClient:
    """Реализация ChannelMirror поверх TelegramClient. Один вызов: одна попытка с таймаутом."""

    def __init__(
        self,
        api_id: int,
        api_hash: str,
        session_file: str = "media_search_session",
        bot_token: Optional[str] = None,
        timeout_sec: float = 30.0,
        auth_state_dir: Optional[Path] = None,
    ):
        self.api_id = api_id
        self.api_hash = api_hash
        self.session_file = session_file
        self.bot_token = bot_token
        self.timeout_sec = timeout_sec
        self.auth_state_dir = auth_state_dir
        self.client: Optional[TelegramClient] = None
        self._entities: Dict[str, Any] = {}
        self._connect_lock = asyncio.Lock()

    def _auth_state_path(self) -> Optional[Path]:
        if not self.auth_state_dir:
            return None
        self.auth_state_dir.mkdir(parents=True, exist_ok=True)
        return self.auth_state_dir / "telegram_auth_state.json"

    @staticmethod
    def _load_json(path: Path) -> Dict[str, Any]:
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return {}
        return data if isinstance(data, dict) else {}

    async def _sign_in_user(self) -> None:
        assert self.client
        phone = os.getenv("TELEGRAM_PHONE")
        if not phone:
            raise MirrorUnavailable(
                "Сессия не авторизована: задайте TELEGRAM_BOT_TOKEN или TELEGRAM_PHONE в .env",
                AUTH_ERROR,
            )
        code = (os.getenv("TELEGRAM_CODE") or "").strip()
        state_path = self._auth_state_path()
        phone_code_hash = self._load_json(state_path).get("phone_code_hash") if state_path else None

        if not code:
            sent = await self.client.send_code_request(phone)
            if state_path:
                state_path.write_text(
                    json.dumps(
                        {
                            "created_at": utc_now_iso(),
                            "phone": phone,
                            "phone_code_hash": getattr(sent, "phone_code_hash", None),
                        },
                        ensure_ascii=False,
                        indent=2,
                    ),
                    encoding="utf-8",
                )
            # В среде без интерактива просим повторный запуск с кодом.
            raise MirrorUnavailable(
                "Код отправлен в Telegram. Укажите TELEGRAM_CODE и перезапустите сервис.",
                AUTH_ERROR,
            )

        try:
            await self.client.sign_in(phone=phone, code=code, phone_code_hash=phone_code_hash)
        except SessionPasswordNeededError:
            pwd = os.getenv("TELEGRAM_2FA_PASSWORD")
            if not pwd:
                raise MirrorUnavailable("Нужен пароль 2FA: задайте TELEGRAM_2FA_PASSWORD", AUTH_ERROR) from None
            await self.client.sign_in(password=pwd)
        finally:
            # После успешного входа очищаем auth state, чтобы не переиспользовать хеш.
            if state_path and state_path.exists() and await self.client.is_user_authorized():
                state_path.unlink(missing_ok=True)

    async def connect(self) -> None:
        """Подключиться и авторизоваться. Неудачная попытка закрывает клиента, следующий вызов начинает заново."""
        async with self._connect_lock:
            if self.client is not None and self.client.is_connected():
                if await self.client.is_user_authorized():
                    return
                # подключены, но вход не завершён: пересоздаём клиента
                await self._drop_client()
            self.client = TelegramClient(self.session_file, int(self.api_id), self.api_hash)
            try:
                await asyncio.wait_for(self.client.connect(), timeout=self.timeout_sec)
                if await self.client.is_user_authorized():
                    return
                if self.bot_token:
                    logger.info("Вход по бот-токену")
                    await self.client.sign_in(bot_token=self.bot_token)
                    return
                await self._sign_in_user()
            except MirrorUnavailable:
                await self._drop_client()
                raise
            except Exception as e:
                await self._drop_client()
                raise mirror_error(e, "connect") from e

    async def _drop_client(self) -> None:
        client, self.client = self.client, None
        self._entities.clear()
        if client is None:
            return
        try:
            await client.disconnect()
        except Exception as e:
            logger.warning("Не удалось закрыть клиента Telegram: %s", e, extra={"error_code": NETWORK_ERROR})

    async def disconnect(self) -> None:
        await self._drop_client()

    async def _resolve_entity(self, channel_id: str) -> Any:
        """Резолв канала по ссылке t.me/..., @username или числовому id (с кэшем)."""
        assert self.client
        normalized = channel_identifier_from_input(channel_id)
        if normalized in self._entities:
            return self._entities[normalized]
        if re.fullmatch(r"-?\d+", normalized or ""):
            entity = await self.client.get_entity(int(normalized))
        else:
            entity = await self.client.get_entity(normalized)
        self._entities[normalized] = entity
        return entity

    async def _bounded(self, awaitable: Awaitable[Any]) -> Any:
        return await asyncio.wait_for(awaitable, timeout=self.timeout_sec)

    async def fetch_recent_messages(self, channel_id: str, limit: int) -> List[ChannelMessage]:
        await self.connect()
        assert self.client
        try:
            entity = await self._bounded(self._resolve_entity(channel_id))
            raw = await self._bounded(self.client.get_messages(entity, limit=limit))
        except Exception as e:
            raise mirror_error(e, "fetch_recent_messages") from e

        messages: List[ChannelMessage] = []
        for msg in raw or []:
            if msg is None or getattr(msg, "id", None) is None:
                continue
            messages.append(message_to_channel_message(msg))
        logger.info("Получено %s сообщений из канала %s", len(messages), channel_id)
        return messages

    async def forward_message(self, target_user: UserRef, channel_id: str, message_id: int) -> bool:
        await self.connect()
        assert self.client
        try:
            from_peer = await self._bounded(self._resolve_entity(channel_id))
            result = await self._bounded(
                self.client.forward_messages(target_user, int(message_id), from_peer=from_peer)
            )
        except Exception as e:
            raise mirror_error(e, "forward_message") from e
        return bool(result)
