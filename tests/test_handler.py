"""Handler compilation: signature checks and invocation semantics."""

import asyncio
import threading
from typing import Optional

import pytest
from pydantic import BaseModel

from rivet import Body, Json, Path, RivetApp, State, TestClient
from rivet.config import Settings
from rivet.errors import ApiError, ConfigurationError
from rivet.extract import JsonBody, OptionalParam, PathParam, QueryParam, StateParam
from rivet.handler import MAX_EXTRACTORS, Handler
from rivet.requests import Request, RequestParts


class Item(BaseModel):
    name: str


class Database:
    pass


def test_extractor_resolution() -> None:
    async def endpoint(id: Path[int], item: Json[Item], db: State[Database], q: str = "x"):
        return None

    handler = Handler.from_callable(endpoint, ("id",))
    kinds = [type(e) for e in handler.extractors]
    assert kinds == [PathParam, JsonBody, StateParam, QueryParam]
    assert handler.required_state == (Database,)


def test_two_body_extractors_are_rejected() -> None:
    async def endpoint(item: Json[Item], raw: Body):
        return None

    with pytest.raises(ConfigurationError, match="only one parameter may consume"):
        Handler.from_callable(endpoint)


def test_too_many_extractors() -> None:
    names = ", ".join(f"p{i}: str = ''" for i in range(MAX_EXTRACTORS + 1))
    namespace: dict = {}
    exec(f"def endpoint({names}):\n    return None", namespace)
    with pytest.raises(ConfigurationError, match=str(MAX_EXTRACTORS)):
        Handler.from_callable(namespace["endpoint"])


def test_variadic_parameters_are_rejected() -> None:
    def endpoint(*args, **kwargs):
        return None

    with pytest.raises(ConfigurationError, match="variadic"):
        Handler.from_callable(endpoint)


def test_path_extractor_must_match_a_capture() -> None:
    async def endpoint(id: Path[int]):
        return id

    with pytest.raises(ConfigurationError, match="not captured"):
        Handler.from_callable(endpoint, ("user_id",))


def test_sync_handlers_run_off_the_event_loop(app: RivetApp) -> None:
    seen: dict = {}

    @app.get("/sync")
    def sync_endpoint():
        seen["thread"] = threading.current_thread()
        return {"ok": True}

    assert TestClient(app).get("/sync").json() == {"ok": True}
    assert seen["thread"] is not threading.main_thread()


def test_handler_never_runs_on_extraction_failure(app: RivetApp) -> None:
    calls = []

    @app.post("/items")
    async def create(item: Json[Item]):
        calls.append(item)
        return item

    resp = TestClient(app).post("/items", body=b"nope")
    assert resp.status_code == 415
    assert calls == []


def test_unexpected_exception_becomes_500_with_error_id(app: RivetApp, caplog) -> None:
    @app.get("/boom")
    async def boom():
        raise RuntimeError("kaboom")

    with caplog.at_level("ERROR", logger="rivet"):
        resp = TestClient(app).get("/boom")
    assert resp.status_code == 500
    body = resp.json()
    assert body["error_type"] == "internal_error"
    assert body["error_id"].startswith("err_")
    assert body["internal"] == "RuntimeError: kaboom"
    assert body["error_id"] in caplog.text


def test_api_error_raised_by_handler_is_serialized(app: RivetApp) -> None:
    @app.get("/secret")
    async def secret():
        raise ApiError.forbidden("no entry")

    resp = TestClient(app).get("/secret")
    assert resp.status_code == 403
    assert resp.json() == {"status": 403, "error_type": "forbidden", "message": "no entry"}


def test_direct_invocation() -> None:
    async def endpoint(id: Path[int]):
        return {"id": id}

    handler = Handler.from_callable(endpoint, ("id",), Settings())
    request = Request(RequestParts("GET", "/items/3", path_params={"id": "3"}))
    response = asyncio.run(handler(request))
    assert response.status_code == 200
    assert response.body == b'{"id":3}'


def test_optional_wrappers_are_not_required() -> None:
    async def endpoint(id: Optional[Path[int]], db: State[Optional[Database]]):
        return None

    handler = Handler.from_callable(endpoint, ("id",))
    assert [type(e) for e in handler.extractors] == [OptionalParam, OptionalParam]
    assert isinstance(handler.extractors[0].inner, PathParam)
    assert handler.required_state == ()

    with pytest.raises(ConfigurationError, match="not captured"):
        Handler.from_callable(endpoint, ())
