import asyncio
import json
import time

import httpx
import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from workbench.config import Settings
from workbench.errors import ErrorCode, NotFoundError, ValidationError
from workbench.executor import execute
from workbench.models import HistoryItem

from conftest import add_member, make_environment, make_request, make_user, make_workspace

SETTINGS = Settings(DATABASE_URL="sqlite://")


def history_count(db, request_id):
    return db.execute(select(func.count(HistoryItem.id)).where(HistoryItem.request_id == request_id)).scalar()


@pytest.fixture
def owner(db):
    return make_user(db, "owner")


@pytest.fixture
def workspace(db, owner):
    return make_workspace(db, owner)


@pytest.mark.asyncio
async def test_success_records_response(db, owner, workspace, transport):
    env = make_environment(db, workspace, owner, {"base_url": "https://api.test", "token": "t0k"})
    req = make_request(
        db, workspace, owner, method="POST", url="{{base_url}}/items",
        headers={"Authorization": "Bearer {{token}}"}, body='{"a":1}', query_params={"limit": "10"},
    )

    record = await execute(db, req.id, owner.id, env.id, settings=SETTINGS, transport=transport)

    assert record.status_code == 200
    assert record.error_message is None
    assert record.header_map["x-echo"] == "1"
    echoed = json.loads(record.response_body)
    assert echoed["url"] == "https://api.test/items?limit=10"
    assert echoed["headers"]["authorization"] == "Bearer t0k"
    assert echoed["body"] == '{"a":1}'
    assert record.duration_ms >= 0
    assert record.user_id == owner.id
    assert history_count(db, req.id) == 1


@pytest.mark.asyncio
async def test_get_does_not_send_stored_body(db, owner, workspace, transport):
    req = make_request(db, workspace, owner, method="GET", body="should not be sent")
    record = await execute(db, req.id, owner.id, settings=SETTINGS, transport=transport)
    assert json.loads(record.response_body)["body"] == ""


@pytest.mark.asyncio
async def test_error_status_codes_are_recorded_not_raised(db, owner, workspace, transport):
    req = make_request(db, workspace, owner, url="https://api.test/boom")
    record = await execute(db, req.id, owner.id, settings=SETTINGS, transport=transport)
    assert record.status_code == 500
    assert record.response_body == "upstream exploded"
    assert record.error is None


@pytest.mark.asyncio
@pytest.mark.parametrize("url,exc_name", [
    ("https://unreachable.test/", "ConnectError"),
    ("https://slow.test/", "ReadTimeout"),
])
async def test_transport_failures_become_history_rows(db, owner, workspace, transport, url, exc_name):
    req = make_request(db, workspace, owner, url=url)
    record = await execute(db, req.id, owner.id, settings=SETTINGS, transport=transport)

    assert record.status_code is None
    assert record.response_headers is None
    assert record.response_body is None
    assert record.error == {"message": record.error["message"], "code": exc_name, "type": "NETWORK_ERROR"}
    assert record.error["message"]
    assert history_count(db, req.id) == 1


@pytest.mark.asyncio
async def test_viewer_may_execute(db, owner, workspace, transport):
    viewer = make_user(db, "viewer")
    add_member(db, workspace, viewer, "viewer")
    req = make_request(db, workspace, owner)

    record = await execute(db, req.id, viewer.id, settings=SETTINGS, transport=transport)
    assert record.user_id == viewer.id
    assert record.status_code == 200


@pytest.mark.asyncio
async def test_non_member_gets_not_found(db, owner, workspace, transport):
    stranger = make_user(db, "stranger")
    req = make_request(db, workspace, owner)
    with pytest.raises(NotFoundError) as exc:
        await execute(db, req.id, stranger.id, settings=SETTINGS, transport=transport)
    assert exc.value.code is ErrorCode.REQUEST_NOT_FOUND
    assert history_count(db, req.id) == 0


@pytest.mark.asyncio
async def test_missing_request_not_found(db, owner, transport):
    with pytest.raises(NotFoundError):
        await execute(db, 999, owner.id, settings=SETTINGS, transport=transport)


@pytest.mark.asyncio
async def test_environment_from_foreign_workspace_is_rejected(db, owner, workspace, transport):
    other = make_user(db, "other")
    foreign_ws = make_workspace(db, other, "foreign")
    foreign_env = make_environment(db, foreign_ws, other, {"base_url": "https://secret.test"})
    req = make_request(db, workspace, owner, url="{{base_url}}/ping")

    with pytest.raises(ValidationError) as exc:
        await execute(db, req.id, owner.id, foreign_env.id, settings=SETTINGS, transport=transport)
    assert exc.value.code is ErrorCode.ENVIRONMENT_NOT_ACCESSIBLE
    assert history_count(db, req.id) == 0


@pytest.mark.asyncio
async def test_storage_failure_is_raised(db, owner, workspace, transport, monkeypatch):
    req = make_request(db, workspace, owner)

    def broken_commit():
        raise OperationalError("INSERT", {}, Exception("disk full"))

    monkeypatch.setattr(db, "commit", broken_commit)
    with pytest.raises(OperationalError):
        await execute(db, req.id, owner.id, settings=SETTINGS, transport=transport)


@pytest.mark.asyncio
async def test_each_execution_appends_one_row(db, owner, workspace, transport):
    req = make_request(db, workspace, owner)
    for _ in range(3):
        await execute(db, req.id, owner.id, settings=SETTINGS, transport=transport)
    assert history_count(db, req.id) == 3


@pytest.mark.asyncio
async def test_timeout_comes_from_settings(db, owner, workspace, monkeypatch):
    seen = {}
    real_client = httpx.AsyncClient

    def spy(*args, **kwargs):
        seen.update(kwargs)
        kwargs["transport"] = httpx.MockTransport(lambda r: httpx.Response(204))
        return real_client(*args, **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", spy)
    req = make_request(db, workspace, owner)
    record = await execute(db, req.id, owner.id, settings=SETTINGS)

    assert seen["timeout"] == 30.0
    assert record.status_code == 204


@pytest.mark.asyncio
async def test_unencodable_header_value_is_recorded(db, owner, workspace, transport):
    env = make_environment(db, workspace, owner, {"who": "José"})
    req = make_request(db, workspace, owner, headers={"X-User": "{{who}}"})

    record = await execute(db, req.id, owner.id, env.id, settings=SETTINGS, transport=transport)

    assert record.status_code is None
    assert record.error["type"] == "NETWORK_ERROR"
    assert record.error["code"] == "UnicodeEncodeError"
    assert history_count(db, req.id) == 1


@pytest.mark.asyncio
async def test_slow_body_is_cut_off_at_execution_timeout(db, owner, workspace):
    async def trickle():
        for _ in range(40):
            await asyncio.sleep(0.05)
            yield b"x"

    async def slow_handler(request):
        return httpx.Response(200, content=trickle())

    settings = Settings(DATABASE_URL="sqlite://", EXECUTION_TIMEOUT_MS=200)
    req = make_request(db, workspace, owner)

    record = await execute(
        db, req.id, owner.id, settings=settings, transport=httpx.MockTransport(slow_handler)
    )

    assert record.status_code is None
    assert record.error["type"] == "NETWORK_ERROR"
    assert record.error["code"] == "TimeoutError"
    assert record.duration_ms < 1500
    assert history_count(db, req.id) == 1


@pytest.mark.asyncio
async def test_environment_id_zero_is_not_treated_as_absent(db, owner, workspace, transport):
    req = make_request(db, workspace, owner)
    with pytest.raises(ValidationError) as exc:
        await execute(db, req.id, owner.id, 0, settings=SETTINGS, transport=transport)
    assert exc.value.code is ErrorCode.ENVIRONMENT_NOT_ACCESSIBLE
    assert history_count(db, req.id) == 0


@pytest.mark.asyncio
async def test_duration_excludes_client_setup(db, owner, workspace, monkeypatch):
    real_client = httpx.AsyncClient

    def slow_setup(*args, **kwargs):
        time.sleep(0.3)
        kwargs["transport"] = httpx.MockTransport(lambda r: httpx.Response(204))
        return real_client(*args, **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", slow_setup)
    req = make_request(db, workspace, owner)
    record = await execute(db, req.id, owner.id, settings=SETTINGS)

    assert record.status_code == 204
    assert record.duration_ms < 300
