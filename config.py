"""Чтение конфигурации сервиса: переменные окружения (.env) + опциональный config/keywords.yml."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import List, Mapping, Optional, Tuple

import yaml

from cache_manager import DEFAULT_FETCH_LIMIT, SEARCH_BIDIRECTIONAL, SEARCH_MODES, CacheSettings
from classifier import DEFAULT_RELEVANCE_KEYWORDS, MATCH_SUBSTRING, MATCH_WORD, RelevanceFilter

PROJECT_ROOT = Path(__file__).resolve().parent

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass
class AppConfig:
    """Параметры сервиса из окружения и дефолтов."""

    api_id: Optional[int] = None
    api_hash: Optional[str] = None
    bot_token: Optional[str] = None
    session_file: str = "media_search_session"
    channel_id: Optional[str] = None
    cache_ttl_seconds: int = 30 * 60
    fetch_limit: int = DEFAULT_FETCH_LIMIT
    mirror_timeout_sec: float = 30.0
    host: str = "0.0.0.0"
    port: int = 3000
    relevance_filter: bool = False
    relevance_keywords: Tuple[str, ...] = DEFAULT_RELEVANCE_KEYWORDS
    relevance_match: str = MATCH_SUBSTRING
    extract_metadata: bool = True
    search_mode: str = SEARCH_BIDIRECTIONAL
    require_query: bool = False
    eager_refresh: bool = True
    app_env: str = "development"
    bot_username: Optional[str] = None
    log_level: str = "INFO"
    logs_dir: Path = field(default_factory=lambda: PROJECT_ROOT / "logs")

    @property
    def mirror_configured(self) -> bool:
        """Есть креды Telegram и канал: эндпоинты, зависящие от зеркала, включены."""
        return bool(self.api_id and self.api_hash and self.channel_id)

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() in ("production", "prod")

    def cache_settings(self) -> CacheSettings:
        relevance = None
        if self.relevance_filter:
            relevance = RelevanceFilter.from_keywords(self.relevance_keywords, match=self.relevance_match)
        return CacheSettings(
            channel_id=self.channel_id or "",
            ttl=timedelta(seconds=self.cache_ttl_seconds),
            fetch_limit=self.fetch_limit,
            relevance=relevance,
            extract_metadata=self.extract_metadata,
            search_mode=self.search_mode,
            require_query=self.require_query,
            bot_username=self.bot_username,
        )


def _get(env: Mapping[str, str], *names: str) -> Optional[str]:
    for name in names:
        value = (env.get(name) or "").strip()
        if value:
            return value
    return None


def _int(env: Mapping[str, str], name: str, default: int, minimum: int = 0) -> int:
    raw = _get(env, name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} должен быть целым числом, получено {raw!r}") from None
    if value < minimum:
        raise ValueError(f"{name} должен быть >= {minimum}, получено {value}") from None
    return value


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = _get(env, name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} должен быть числом, получено {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} должен быть > 0, получено {value}") from None
    return value


def parse_bool(raw: Optional[str], name: str, default: bool = False) -> bool:
    """1/true/yes/on и 0/false/no/off без учёта регистра; пусто -> default."""
    value = (raw or "").strip()
    if not value:
        return default
    lowered = value.lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ValueError(f"{name} должен быть true/false, получено {value!r}")


def _bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    return parse_bool(_get(env, name), name, default)


def _choice(env: Mapping[str, str], name: str, default: str, choices: Tuple[str, ...]) -> str:
    raw = _get(env, name)
    if raw is None:
        return default
    lowered = raw.lower()
    if lowered not in choices:
        raise ValueError(f"{name} должен быть одним из {', '.join(choices)}, получено {raw!r}") from None
    return lowered


def _split_keywords(raw: Optional[str]) -> List[str]:
    """Разделить строку по запятым, обрезать пробелы, выбросить пустые."""
    if not raw:
        return []
    return [k.strip() for k in raw.split(",") if k.strip()]


def load_keywords_yaml(path: Path) -> List[str]:
    """Ключевые слова фильтра релевантности из YAML вида ``keywords: [...]``."""
    if not path.exists():
        return []
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(
            f"Ошибка разбора YAML в {path}: {e}. Проверьте синтаксис (отступы, кавычки)."
        ) from e
    if not data or not isinstance(data, dict):
        return []
    keywords = data.get("keywords")
    if not isinstance(keywords, list):
        return []
    return [str(k).strip() for k in keywords if k is not None and str(k).strip()]


def load_config(
    env: Optional[Mapping[str, str]] = None,
    project_root: Optional[Path] = None,
) -> AppConfig:
    """Собрать AppConfig. Некорректные значения дают ValueError (в CLI логируется с CONFIG_ERROR).

    Отсутствие кредов Telegram ошибкой не считается: mirror_configured будет False.
    """
    if env is None:
        env = os.environ
    if project_root is None:
        project_root = PROJECT_ROOT

    api_id_raw = _get(env, "TELEGRAM_API_ID", "API_ID")
    api_id: Optional[int] = None
    if api_id_raw is not None:
        try:
            api_id = int(api_id_raw)
        except ValueError:
            raise ValueError(f"TELEGRAM_API_ID должен быть целым числом, получено {api_id_raw!r}") from None

    keywords_path_raw = _get(env, "KEYWORDS_FILE")
    keywords_path = Path(keywords_path_raw) if keywords_path_raw else project_root / "config" / "keywords.yml"
    if not keywords_path.is_absolute():
        keywords_path = project_root / keywords_path
    keywords = _split_keywords(_get(env, "RELEVANCE_KEYWORDS")) + load_keywords_yaml(keywords_path)

    bot_username = _get(env, "BOT_USERNAME")
    if bot_username:
        bot_username = bot_username.lstrip("@")

    logs_dir_raw = _get(env, "LOGS_DIR")

    return AppConfig(
        api_id=api_id,
        api_hash=_get(env, "TELEGRAM_API_HASH", "API_HASH"),
        bot_token=_get(env, "TELEGRAM_BOT_TOKEN", "BOT_TOKEN"),
        session_file=_get(env, "TELEGRAM_SESSION") or "media_search_session",
        channel_id=_get(env, "DB_CHANNEL_ID", "CHANNEL_ID"),
        cache_ttl_seconds=_int(env, "CACHE_TTL_SECONDS", 30 * 60),
        fetch_limit=_int(env, "FETCH_LIMIT", DEFAULT_FETCH_LIMIT, minimum=1),
        mirror_timeout_sec=_float(env, "MIRROR_TIMEOUT_SEC", 30.0),
        host=_get(env, "HOST") or "0.0.0.0",
        port=_int(env, "PORT", 3000, minimum=1),
        relevance_filter=_bool(env, "RELEVANCE_FILTER", False),
        relevance_keywords=tuple(keywords) if keywords else DEFAULT_RELEVANCE_KEYWORDS,
        relevance_match=_choice(env, "RELEVANCE_MATCH", MATCH_SUBSTRING, (MATCH_SUBSTRING, MATCH_WORD)),
        extract_metadata=_bool(env, "EXTRACT_METADATA", True),
        search_mode=_choice(env, "SEARCH_MODE", SEARCH_BIDIRECTIONAL, SEARCH_MODES),
        require_query=_bool(env, "REQUIRE_QUERY", False),
        eager_refresh=_bool(env, "EAGER_REFRESH", True),
        app_env=_get(env, "APP_ENV") or "development",
        bot_username=bot_username,
        log_level=(_get(env, "LOG_LEVEL") or "INFO").upper(),
        logs_dir=Path(logs_dir_raw) if logs_dir_raw else project_root / "logs",
    )
