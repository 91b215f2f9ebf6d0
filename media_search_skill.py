#!/usr/bin/env python3
"""Media Search CLI: HTTP-сервер поиска и разовые команды search / forward / debug."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

# local import
sys.path.append(os.path.dirname(__file__))
from api_server import build_mirror, create_app  # noqa: E402
from cache_manager import CacheManager  # noqa: E402
from config import AppConfig, load_config  # noqa: E402
from contracts import decision_to_dict, iso_utc, media_entry_to_dict  # noqa: E402
from errors import CONFIG_ERROR, MIRROR_NOT_CONFIGURED  # noqa: E402
from exit_codes import EXIT_FAILURE, EXIT_INTERRUPTED, EXIT_PARTIAL, EXIT_SUCCESS  # noqa: E402
from forwarder import ForwardValidationError, forward_file  # noqa: E402
from logging_setup import new_request_id, set_request_id, setup_app_logging  # noqa: E402

LOG = logging.getLogger("media_search.cli")


def _configure_utf8_stdio() -> None:
    """Включить UTF-8 для stdout/stderr (важно для Windows-консоли)."""
    for stream in (sys.stdout, sys.stderr):
        try:
            stream.reconfigure(encoding="utf-8")
        except (AttributeError, ValueError):
            pass


def _print_utf8(text: str) -> None:
    sys.stdout.buffer.write(text.encode("utf-8", errors="replace"))
    sys.stdout.buffer.write(b"\n")


def _print_err_utf8(text: str) -> None:
    sys.stderr.buffer.write(text.encode("utf-8", errors="replace"))
    sys.stderr.buffer.write(b"\n")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Search/forward proxy over a Telegram channel's media history")
    p.add_argument(
        "command",
        choices=["serve", "search", "forward", "debug"],
        help="serve — HTTP API; search — разовый поиск; forward — переслать файл; debug — решения классификатора",
    )
    p.add_argument("--query", "-q", default="", help="Строка поиска (для search)")
    p.add_argument("--file-id", help="id сообщения из результата поиска (для forward)")
    p.add_argument("--user-id", help="id пользователя или @username (для forward)")
    p.add_argument("--host", help="Адрес сервера (по умолчанию HOST или 0.0.0.0)")
    p.add_argument("--port", type=int, help="Порт сервера (по умолчанию PORT или 3000)")
    return p


def serve(config: AppConfig, args: argparse.Namespace) -> int:
    import uvicorn

    app = create_app(config)
    host = args.host or config.host
    port = args.port or config.port
    LOG.info("Сервер запускается на %s:%s (mirror=%s)", host, port, config.mirror_configured)
    uvicorn.run(app, host=host, port=port, log_level="warning")
    return EXIT_SUCCESS


async def run(config: AppConfig, args: argparse.Namespace) -> int:
    mirror = build_mirror(config)
    if mirror is None:
        LOG.error("Не заданы TELEGRAM_API_ID/TELEGRAM_API_HASH/DB_CHANNEL_ID", extra={"error_code": MIRROR_NOT_CONFIGURED})
        _print_err_utf8("Error: TELEGRAM_API_ID, TELEGRAM_API_HASH and DB_CHANNEL_ID are required in .env")
        return EXIT_FAILURE

    try:
        if args.command == "forward":
            try:
                result = await forward_file(mirror, config.channel_id or "", args.file_id, args.user_id)
            except ForwardValidationError as e:
                _print_err_utf8(f"Error: {e}")
                return EXIT_FAILURE
            _print_utf8(json.dumps({"success": result.success, "error": result.error}, ensure_ascii=False))
            return EXIT_SUCCESS if result.success else EXIT_FAILURE

        cache = CacheManager(mirror, config.cache_settings())
        refresh = await cache.refresh()

        if args.command == "debug":
            out = {
                "capturedAt": iso_utc(cache.captured_at),
                "decisions": [decision_to_dict(d) for d in cache.decisions],
            }
        else:
            LOG.info("Команда search (query=%r)", args.query)
            results = cache.search(args.query) if args.query else cache.list_entries()
            out = {
                "success": refresh.ok,
                "data": [media_entry_to_dict(e) for e in results],
                "count": len(results),
                "lastUpdated": iso_utc(cache.captured_at),
            }
        _print_utf8(json.dumps(out, ensure_ascii=False, indent=2))
        if not refresh.ok:
            _print_err_utf8(f"Warning: refresh failed ({refresh.error_code}): {refresh.error}")
            return EXIT_PARTIAL
        return EXIT_SUCCESS
    finally:
        disconnect = getattr(mirror, "disconnect", None)
        if disconnect is not None:
            await disconnect()


def main() -> int:
    _configure_utf8_stdio()
    load_dotenv(dotenv_path=Path(__file__).parent / ".env")
    args = build_parser().parse_args()

    try:
        config = load_config()
    except ValueError as e:
        logging.basicConfig(level=logging.INFO)
        LOG.error("Конфиг: %s", e, extra={"error_code": CONFIG_ERROR})
        _print_err_utf8(f"Error: {e}")
        return EXIT_FAILURE

    setup_app_logging(config.logs_dir, level=getattr(logging, config.log_level, logging.INFO), console=args.command == "serve")
    set_request_id(new_request_id())

    if args.command == "serve":
        return serve(config, args)
    try:
        return asyncio.run(run(config, args))
    except KeyboardInterrupt:
        LOG.warning("Остановка по Ctrl+C")
        _print_err_utf8("Interrupted")
        return EXIT_INTERRUPTED
    except Exception as e:
        LOG.exception("Ошибка выполнения: %s", e)
        _print_err_utf8(f"Error: {e}")
        return EXIT_FAILURE


if __name__ == "__main__":
    raise SystemExit(main())
