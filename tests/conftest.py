import json

import httpx
import pytest
from fastapi.testclient import TestClient

from workbench import repository
from workbench.config import Settings
from workbench.db import Database
from workbench.main import create_app
from workbench.models import Environment, RequestItem, User, WorkspaceMembership
from workbench.rbac import ROLE_DEFINITIONS
from workbench.workspaces import create_workspace


def echo_handler(request: httpx.Request) -> httpx.Response:
    """Fake upstream: echoes what it received, with a few magic hosts."""
    host = request.url.host
    if host == "unreachable.test":
        raise httpx.ConnectError("connection refused", request=request)
    if host == "slow.test":
        raise httpx.ReadTimeout("timed out", request=request)
    if request.url.path == "/boom":
        return httpx.Response(500, headers={"x-upstream": "boom"}, text="upstream exploded")
    return httpx.Response(
        200,
        headers={"x-echo": "1"},
        json={
            "method": request.method,
            "url": str(request.url),
            "headers": dict(request.headers),
            "body": request.content.decode(),
        },
    )


@pytest.fixture
def transport():
    return httpx.MockTransport(echo_handler)


@pytest.fixture
def settings():
    return Settings(DATABASE_URL="sqlite://", JWT_SECRET="test-secret", LOG_JSON=False, LOG_LEVEL="WARNING")


@pytest.fixture
def client(settings, transport):
    app = create_app(settings, http_transport=transport)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db():
    database = Database("sqlite://")
    database.create_all()
    session = database.session()
    repository.seed_roles(session, ROLE_DEFINITIONS)
    try:
        yield session
    finally:
        session.close()
        database.dispose()


# --- service-level builders ---


def make_user(db, username):
    user = User(username=username, email=f"{username}@example.com", password_hash="x")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_workspace(db, owner, name="W"):
    return create_workspace(db, owner.id, name)


def add_member(db, workspace, user, role_name):
    role = repository.get_role_by_name(db, role_name)
    db.add(WorkspaceMembership(user_id=user.id, workspace_id=workspace.id, role_id=role.id))
    db.commit()


def make_request(db, workspace, user, method="GET", url="https://api.test/ping", **kw):
    item = RequestItem(
        name=kw.get("name", "req"),
        method=method,
        url=url,
        headers=json.dumps(kw.get("headers", {})),
        body=kw.get("body"),
        query_params=json.dumps(kw.get("query_params", {})),
        workspace_id=workspace.id,
        created_by=user.id,
    )
    db.add(item)
    db.commit()
    db.refresh(item)
    return item


def make_environment(db, workspace, user, variables):
    env = Environment(
        workspace_id=workspace.id,
        name="env",
        variables=json.dumps(variables),
        created_by=user.id,
    )
    db.add(env)
    db.commit()
    db.refresh(env)
    return env


# --- api-level helpers ---


def signup(client, username):
    resp = client.post(
        "/auth/register",
        json={"username": username, "email": f"{username}@example.com", "password": "Secret123!"},
    )
    assert resp.status_code == 201, resp.text
    data = resp.json()["data"]
    return {
        "id": data["user"]["id"],
        "workspace_id": data["workspace_id"],
        "headers": {"Authorization": f"Bearer {data['token']}"},
    }
