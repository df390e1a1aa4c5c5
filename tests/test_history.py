from datetime import datetime, timedelta

import pytest

from workbench import history
from workbench.config import Settings
from workbench.errors import ErrorCode, ForbiddenError, NotFoundError, ValidationError
from workbench.models import HistoryItem

from conftest import add_member, make_request, make_user, make_workspace


def record(db, req, user, minutes_ago=0, status=200):
    item = HistoryItem(
        request_id=req.id,
        user_id=user.id,
        status_code=status,
        response_headers="{}",
        response_body="ok",
        duration_ms=5,
        executed_at=datetime(2026, 1, 1, 12, 0) - timedelta(minutes=minutes_ago),
    )
    db.add(item)
    db.commit()
    db.refresh(item)
    return item


@pytest.fixture
def setup(db):
    owner = make_user(db, "owner")
    ws = make_workspace(db, owner)
    req = make_request(db, ws, owner, name="ping")
    return db, owner, ws, req


def test_page_defaults_and_bounds():
    settings = Settings(DATABASE_URL="sqlite://")
    assert history.page(None, None, settings) == (50, 0)
    assert history.page(10000, 5, settings) == (settings.HISTORY_MAX_LIMIT, 5)
    assert history.page(0, 0, settings) == (1, 0)
    with pytest.raises(ValidationError):
        history.page(10, -1, settings)


def test_list_by_request_newest_first(setup):
    db, owner, ws, req = setup
    old = record(db, req, owner, minutes_ago=30)
    new = record(db, req, owner, minutes_ago=1)
    mid = record(db, req, owner, minutes_ago=10)

    ids = [e["id"] for e in history.list_by_request(db, req.id, owner.id, 50, 0)]
    assert ids == [new.id, mid.id, old.id]

    page2 = history.list_by_request(db, req.id, owner.id, 1, 1)
    assert [e["id"] for e in page2] == [mid.id]


def test_list_by_request_hidden_from_non_members(setup):
    db, owner, ws, req = setup
    stranger = make_user(db, "stranger")
    with pytest.raises(NotFoundError) as exc:
        history.list_by_request(db, req.id, stranger.id, 50, 0)
    assert exc.value.code is ErrorCode.REQUEST_NOT_FOUND


def test_list_by_workspace_includes_request_and_user_names(setup):
    db, owner, ws, req = setup
    other_req = make_request(db, ws, owner, name="other")
    record(db, req, owner, minutes_ago=5)
    record(db, other_req, owner, minutes_ago=1)

    entries = history.list_by_workspace(db, ws.id, owner.id, 50, 0)
    assert [e["request_name"] for e in entries] == ["other", "ping"]
    assert all(e["executed_by"] == "owner" for e in entries)


def test_list_by_workspace_scoped_to_workspace(setup):
    db, owner, ws, req = setup
    other_ws = make_workspace(db, owner, "second")
    foreign_req = make_request(db, other_ws, owner)
    record(db, req, owner)
    record(db, foreign_req, owner)

    entries = history.list_by_workspace(db, ws.id, owner.id, 50, 0)
    assert {e["request_id"] for e in entries} == {req.id}


def test_list_by_workspace_requires_membership(setup):
    db, owner, ws, req = setup
    stranger = make_user(db, "stranger")
    with pytest.raises(NotFoundError):
        history.list_by_workspace(db, ws.id, stranger.id, 50, 0)


def test_executor_can_delete_own_entry_regardless_of_role(setup):
    db, owner, ws, req = setup
    viewer = make_user(db, "viewer")
    add_member(db, ws, viewer, "viewer")
    entry = record(db, req, viewer)

    history.delete_entry(db, entry.id, viewer.id)
    assert db.get(HistoryItem, entry.id) is None


def test_non_executor_below_admin_cannot_delete(setup):
    db, owner, ws, req = setup
    editor = make_user(db, "editor")
    add_member(db, ws, editor, "editor")
    entry = record(db, req, owner)

    with pytest.raises(ForbiddenError) as exc:
        history.delete_entry(db, entry.id, editor.id)
    assert exc.value.code is ErrorCode.INSUFFICIENT_PERMISSIONS
    assert db.get(HistoryItem, entry.id) is not None


def test_admin_can_delete_others_entries(setup):
    db, owner, ws, req = setup
    admin = make_user(db, "admin")
    add_member(db, ws, admin, "admin")
    entry = record(db, req, owner)

    history.delete_entry(db, entry.id, admin.id)
    assert db.get(HistoryItem, entry.id) is None


def test_delete_missing_or_inaccessible_is_not_found(setup):
    db, owner, ws, req = setup
    stranger = make_user(db, "stranger")
    entry = record(db, req, owner)

    with pytest.raises(NotFoundError) as exc:
        history.delete_entry(db, 9999, owner.id)
    assert exc.value.code is ErrorCode.HISTORY_NOT_FOUND

    with pytest.raises(NotFoundError):
        history.delete_entry(db, entry.id, stranger.id)
