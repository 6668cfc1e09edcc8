from __future__ import annotations

import asyncio
import time
from typing import Any

import httpx
import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from reqctx.context.errors import ContextConfigError
from reqctx.context.handle import Context
from reqctx.context.registry import REGISTRY
from reqctx.context.scope import use_context
from reqctx.core import settings as settings_module
from reqctx.core.deps import get_request_context
from reqctx.core.middleware import ContextMiddleware


def _app(**options: Any) -> FastAPI:
    app = FastAPI()
    app.add_middleware(ContextMiddleware, **options)

    @app.get("/test")
    def test_route() -> dict[str, Any]:
        use_context().set("testKey", "testValue")
        return {"value": use_context().get("testKey")}

    @app.get("/session")
    def session() -> dict[str, Any]:
        return {"sessionId": use_context().get("sessionId")}

    @app.get("/default-values")
    def default_values(ctx: Context = Depends(get_request_context)) -> dict[str, Any]:
        return {"defaultValue": ctx.get("defaultKey")}

    @app.get("/separate")
    def separate() -> dict[str, Any]:
        ctx = use_context()
        value = ctx.get("separateKey") or "default"
        ctx.set("separateKey", "set")
        return {"value": value}

    @app.get("/expiry")
    def expiry() -> dict[str, Any]:
        use_context().set("expiryKey", "expiryValue", ttl=0.1)
        return {"set": True}

    @app.get("/check-expiry")
    def check_expiry() -> dict[str, Any]:
        return {"value": use_context().get("expiryKey")}

    @app.get("/id")
    async def own_id(who: str) -> dict[str, Any]:
        use_context().set("id", who)
        await asyncio.sleep(0.02)
        return {"id": use_context().get("id")}

    return app


def test_session_id_from_header() -> None:
    client = TestClient(_app())
    r = client.get("/session", headers={"x-session-id": "test-session"})
    assert r.status_code == 200
    assert r.json()["sessionId"] == "test-session"
    assert "test-session" in REGISTRY


def test_authorization_header_fallback() -> None:
    client = TestClient(_app())
    r = client.get("/session", headers={"authorization": "Bearer auth-session"})
    assert r.json()["sessionId"] == "Bearer auth-session"


def test_missing_identity_uses_default_session() -> None:
    client = TestClient(_app())
    r = client.get("/test")
    assert r.json()["value"] == "testValue"
    assert REGISTRY.get("default-session") is not None


def test_default_values_from_options() -> None:
    client = TestClient(_app(default_values={"defaultKey": "defaultValue"}))
    assert client.get("/default-values").json()["defaultValue"] == "defaultValue"


def test_sessions_persist_and_stay_isolated() -> None:
    client = TestClient(_app())
    assert client.get("/separate", headers={"x-session-id": "separate1"}).json()["value"] == "default"
    assert client.get("/separate", headers={"x-session-id": "separate2"}).json()["value"] == "default"
    assert client.get("/separate", headers={"x-session-id": "separate1"}).json()["value"] == "set"


def test_request_state_and_ambient_accessor_agree() -> None:
    app = _app()
    seen: dict[str, Any] = {}

    @app.get("/compare")
    def compare(ctx: Context = Depends(get_request_context)) -> dict[str, Any]:
        seen["dep"] = ctx
        seen["ambient"] = use_context()
        seen["by_id"] = use_context("compare-test")
        return {}

    TestClient(app).get("/compare", headers={"x-session-id": "compare-test"})
    assert seen["dep"] is seen["ambient"] is seen["by_id"]


def test_key_expiry_across_requests() -> None:
    client = TestClient(_app())
    headers = {"x-session-id": "expiry-test"}
    client.get("/expiry", headers=headers)
    assert client.get("/check-expiry", headers=headers).json()["value"] == "expiryValue"
    time.sleep(0.15)
    assert client.get("/check-expiry", headers=headers).json()["value"] is None


def test_global_expiry_from_settings(monkeypatch) -> None:
    monkeypatch.setattr(settings_module.settings, "EXPIRY_SECONDS", 0.1, raising=False)
    client = TestClient(_app())
    headers = {"x-session-id": "global-expiry"}
    client.get("/test", headers=headers)
    time.sleep(0.15)
    ctx = REGISTRY.get("global-expiry")
    assert ctx is not None
    assert ctx.get("testKey") is None


def test_concurrent_requests_observe_only_their_own_values() -> None:
    app = _app()

    async def main() -> list[httpx.Response]:
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            return await asyncio.gather(
                client.get("/id", params={"who": "user1"}, headers={"x-session-id": "user1"}),
                client.get("/id", params={"who": "user2"}, headers={"x-session-id": "user2"}),
                client.get("/id", params={"who": "user3"}, headers={"x-session-id": "user3"}),
            )

    responses = asyncio.run(main())
    assert [r.json()["id"] for r in responses] == ["user1", "user2", "user3"]
    assert REGISTRY.get("user1").get("id") == "user1"
    assert REGISTRY.get("user2").get("id") == "user2"


def test_request_mode_tears_down_after_response() -> None:
    app = _app(mode="request")
    seen: dict[str, Any] = {}

    @app.get("/capture")
    def capture() -> dict[str, Any]:
        ctx = use_context()
        ctx.set("secret", "value")
        seen["ctx"] = ctx
        seen["id"] = ctx.get("contextId")
        return {"contextId": seen["id"]}

    client = TestClient(app)
    r1 = client.get("/capture", headers={"x-session-id": "same"})
    first = seen["ctx"]
    r2 = client.get("/capture", headers={"x-session-id": "same"})

    assert r1.json()["contextId"] != r2.json()["contextId"]
    assert seen["ctx"] is not first
    assert first.get("secret") is None
    assert use_context(r1.json()["contextId"]) is None
    assert len(REGISTRY) == 0


def test_request_mode_cleans_up_when_handler_raises() -> None:
    app = _app(mode="request")

    @app.get("/fail")
    def fail() -> None:
        use_context().set("k", "v")
        raise RuntimeError("handler failed")

    client = TestClient(app, raise_server_exceptions=False)
    r = client.get("/fail")
    assert r.status_code == 500
    assert len(REGISTRY) == 0


def test_request_mode_from_settings(monkeypatch) -> None:
    monkeypatch.setattr(settings_module.settings, "MODE", "request", raising=False)
    client = TestClient(_app())
    client.get("/test")
    assert len(REGISTRY) == 0


def test_no_binding_leaks_out_of_request() -> None:
    client = TestClient(_app())
    client.get("/test", headers={"x-session-id": "leak-check"})
    assert use_context() is None


def test_invalid_options_fail_on_startup() -> None:
    app = FastAPI()
    app.add_middleware(ContextMiddleware, mode="global")
    with pytest.raises(ContextConfigError):
        TestClient(app).get("/")

    app = FastAPI()
    app.add_middleware(ContextMiddleware, expiry=-5)
    with pytest.raises(ContextConfigError):
        TestClient(app).get("/")


def test_dependency_without_middleware_is_500() -> None:
    app = FastAPI()

    @app.get("/ctx")
    def ctx_route(ctx: Context = Depends(get_request_context)) -> dict[str, Any]:
        return {}

    assert TestClient(app).get("/ctx").status_code == 500


def _http_scope(path: str, headers: list[tuple[bytes, bytes]] | None = None) -> dict[str, Any]:
    return {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "GET",
        "scheme": "http",
        "path": path,
        "raw_path": path.encode(),
        "query_string": b"",
        "root_path": "",
        "headers": headers or [],
        "client": ("testclient", 50000),
        "server": ("testserver", 80),
    }


def test_request_mode_cleans_up_when_request_is_cancelled() -> None:
    app = _app(mode="request")
    seen: dict[str, Any] = {}

    @app.get("/slow")
    async def slow() -> dict[str, Any]:
        ctx = use_context()
        ctx.set("secret", "value")
        seen["ctx"] = ctx
        await asyncio.sleep(10)
        return {}

    async def main() -> int:
        request_sent = False
        disconnected = asyncio.Event()

        async def receive() -> dict[str, Any]:
            nonlocal request_sent
            if not request_sent:
                request_sent = True
                return {"type": "http.request", "body": b"", "more_body": False}
            await disconnected.wait()
            return {"type": "http.disconnect"}

        async def send(message: dict[str, Any]) -> None:
            pass

        task = asyncio.create_task(app(_http_scope("/slow"), receive, send))
        await asyncio.sleep(0.2)
        in_flight = len(REGISTRY)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return in_flight

    assert asyncio.run(main()) == 1
    assert len(REGISTRY) == 0
    assert seen["ctx"].get("secret") is None


def test_sync_handler_ttl_is_removed_without_a_read() -> None:
    app = _app()

    @app.get("/sync-ttl")
    def sync_ttl() -> dict[str, Any]:
        use_context().set("token", "secret", ttl=0.05)
        return {}

    with TestClient(app) as client:
        client.get("/sync-ttl", headers={"x-session-id": "ttl-sync"})
        storage = REGISTRY.get("ttl-sync")._store._storage
        assert "token" in storage
        time.sleep(0.3)
        assert "token" not in storage
        assert "sessionId" in storage
