#!/usr/bin/env python3
"""
Тесты HTTP API (FastAPI TestClient): форма ответов, коды ошибок, refresh через эндпоинты.

Запуск из корня проекта:
  python tests/test_api_server.py
"""

from __future__ import annotations

import sys
import tempfile
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))
sys.path.insert(0, str(Path(__file__).resolve().parent))

from fastapi.testclient import TestClient

from api_server import create_app
from config import AppConfig
from errors import MIRROR_NOT_CONFIGURED, RATE_LIMIT, VALIDATION_ERROR
from fakes import FakeClock, FakeMirror, sample_channel, unavailable

LOGS_DIR = Path(tempfile.gettempdir()) / "media_search_test_logs"


def _config(**overrides) -> AppConfig:
    params = {"channel_id": "@movies", "eager_refresh": False, "logs_dir": LOGS_DIR}
    params.update(overrides)
    return AppConfig(**params)


def _client(mirror=None, **overrides) -> tuple:
    mirror = mirror or FakeMirror(sample_channel())
    clock = FakeClock()
    app = create_app(_config(**overrides), mirror=mirror, clock=clock)
    return TestClient(app), mirror, clock


def test_index_lists_endpoints() -> None:
    client, _, _ = _client()
    r = client.get("/")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "running"
    assert body["endpoints"]["search"].startswith("/search")


def test_without_mirror_dependent_routes_503() -> None:
    app = create_app(AppConfig(logs_dir=LOGS_DIR))
    client = TestClient(app)
    for method, path in (("get", "/search?q=x"), ("get", "/movies"), ("post", "/forward")):
        r = getattr(client, method)(path)
        assert r.status_code == 503, path
        assert r.json()["errorCode"] == MIRROR_NOT_CONFIGURED
    r = client.get("/_health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "mirror": False}


def test_search_response_shape() -> None:
    client, mirror, _ = _client()
    r = client.get("/search", params={"q": "inception"})
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["count"] == 1
    assert body["lastUpdated"] == "2024-05-01T12:00:00Z"
    item = body["data"][0]
    assert item["id"] == 105
    assert item["displayName"] == "Inception (2010) [1080p].mkv"
    assert item["mediaKind"] == "document"
    assert item["title"] == "Inception"
    assert item["releaseYear"] == "2010"
    assert item["qualityTag"] == "1080p"
    assert mirror.fetch_calls == 1


def test_search_without_query_returns_all() -> None:
    client, _, _ = _client()
    body = client.get("/search").json()
    assert body["count"] == 4
    assert [e["id"] for e in body["data"]] == [105, 103, 102, 100]


def test_required_query_400_without_mirror_call() -> None:
    client, mirror, _ = _client(require_query=True)
    r = client.get("/search", params={"q": "  "})
    assert r.status_code == 400
    assert r.json()["errorCode"] == VALIDATION_ERROR
    assert mirror.fetch_calls == 0


def test_snapshot_reused_until_ttl() -> None:
    client, mirror, clock = _client()
    client.get("/movies")
    client.get("/search", params={"q": "matrix"})
    assert mirror.fetch_calls == 1
    clock.advance(31 * 60)
    client.get("/movies")
    assert mirror.fetch_calls == 2


def test_force_update_refetches() -> None:
    client, mirror, _ = _client()
    client.get("/search", params={"q": "matrix"})
    client.get("/search", params={"q": "matrix", "forceUpdate": "true"})
    assert mirror.fetch_calls == 2
    client.get("/search", params={"q": "matrix", "forceUpdate": "false"})
    assert mirror.fetch_calls == 2
    client.get("/search", params={"q": "matrix", "forceUpdate": "1"})
    assert mirror.fetch_calls == 3
    r = client.get("/search", params={"q": "matrix", "forceUpdate": "maybe"})
    assert r.status_code == 400
    assert r.json()["errorCode"] == VALIDATION_ERROR
    assert "forceUpdate" in r.json()["error"]
    assert mirror.fetch_calls == 3


def test_mirror_failure_serves_empty_success() -> None:
    mirror = FakeMirror(sample_channel())
    mirror.fetch_error = unavailable()
    client, _, _ = _client(mirror=mirror)
    r = client.get("/movies")
    assert r.status_code == 200
    assert r.json() == {"success": True, "data": [], "count": 0, "lastUpdated": None}


def test_eager_refresh_on_startup() -> None:
    mirror = FakeMirror(sample_channel())
    app = create_app(_config(eager_refresh=True), mirror=mirror, clock=FakeClock())
    with TestClient(app) as client:
        assert mirror.fetch_calls == 1
        body = client.get("/_health").json()
        assert body["mirror"] is True
        assert body["cacheCount"] == 4
        assert body["lastUpdated"] == "2024-05-01T12:00:00Z"
        client.get("/search", params={"q": "poster"})
        assert mirror.fetch_calls == 1


def test_forward_success() -> None:
    client, mirror, _ = _client()
    r = client.post("/forward", json={"fileId": "103", "userId": 777})
    assert r.status_code == 200
    assert r.json() == {"success": True}
    assert mirror.forward_calls == [(777, "@movies", 103)]
    # пересылка кэш не трогает
    assert mirror.fetch_calls == 0


def test_forward_validation_errors() -> None:
    client, mirror, _ = _client()
    for payload in ({"userId": 777}, {"fileId": 103}, {"fileId": "abc", "userId": 777}):
        r = client.post("/forward", json=payload)
        assert r.status_code == 400, payload
        assert r.json()["success"] is False
        assert r.json()["errorCode"] == VALIDATION_ERROR
    r = client.post("/forward", json=[103, 777])
    assert r.status_code == 400
    r = client.post("/forward", content=b"not json", headers={"Content-Type": "application/json"})
    assert r.status_code == 400
    assert mirror.forward_calls == []


def test_forward_mirror_failure_500() -> None:
    mirror = FakeMirror()
    mirror.forward_error = unavailable(RATE_LIMIT)
    client, _, _ = _client(mirror=mirror)
    r = client.post("/forward", json={"fileId": 103, "userId": "@someone"})
    assert r.status_code == 500
    body = r.json()
    assert body["success"] is False
    assert body["error"]
    assert body["errorCode"] == RATE_LIMIT


def test_debug_lists_decisions() -> None:
    client, _, _ = _client()
    client.get("/movies")
    body = client.get("/debug").json()
    assert body["capturedAt"] == "2024-05-01T12:00:00Z"
    by_id = {d["messageId"]: d for d in body["decisions"]}
    assert len(by_id) == 6
    assert by_id[104]["accepted"] is False
    assert by_id[102]["displayName"] == "photo_102.jpg"


def test_debug_hidden_in_production() -> None:
    client, _, _ = _client(app_env="production")
    assert client.get("/debug").status_code == 404


def test_deep_link_in_entries() -> None:
    client, _, _ = _client(bot_username="moviebot")
    item = client.get("/search", params={"q": "inception"}).json()["data"][0]
    assert item["link"] == "https://t.me/moviebot?start=get-105"


def test_request_id_header() -> None:
    client, _, _ = _client()
    r = client.get("/_health", headers={"X-Request-ID": "abc123"})
    assert r.headers["X-Request-ID"] == "abc123"
    generated = client.get("/_health").headers["X-Request-ID"]
    assert len(generated) == 8


def run_all() -> bool:
    cases = [
        ("index", test_index_lists_endpoints),
        ("no mirror 503", test_without_mirror_dependent_routes_503),
        ("search shape", test_search_response_shape),
        ("search without query", test_search_without_query_returns_all),
        ("required query 400", test_required_query_400_without_mirror_call),
        ("snapshot reused until ttl", test_snapshot_reused_until_ttl),
        ("forceUpdate", test_force_update_refetches),
        ("mirror failure empty", test_mirror_failure_serves_empty_success),
        ("eager refresh", test_eager_refresh_on_startup),
        ("forward success", test_forward_success),
        ("forward validation", test_forward_validation_errors),
        ("forward mirror failure", test_forward_mirror_failure_500),
        ("debug decisions", test_debug_lists_decisions),
        ("debug hidden in production", test_debug_hidden_in_production),
        ("deep link", test_deep_link_in_entries),
        ("request id header", test_request_id_header),
    ]
    ok = 0
    for name, fn in cases:
        try:
            fn()
            ok += 1
            print(f"  OK {name}")
        except Exception as e:
            print(f"  FAIL {name}: {e!r}")
    return ok == len(cases)


if __name__ == "__main__":
    print("API server tests")
    sys.exit(0 if run_all() else 1)
