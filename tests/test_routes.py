import logging
from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from fastapi import Depends, FastAPI
from httpx import ASGITransport, AsyncClient

from rbac_engine.core import config
from rbac_engine.core.database.engine import get_db
from rbac_engine.features.permissions.dependencies import get_metadata, limiter, require_permission
from rbac_engine.main import app


@pytest_asyncio.fixture
async def client(session_factory, metadata) -> AsyncIterator[AsyncClient]:
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_metadata] = lambda: metadata
    limiter.reset()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


async def _create_role(client: AsyncClient, name: str, groups: list[str], roleable_id: int = 1) -> dict:
    response = await client.post("/permissions/roles", json={
        "roleable_type": "app",
        "roleable_id": roleable_id,
        "name": name,
        "title": name.title(),
        "permission_groups": groups,
    })
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_sync_and_tree(client: AsyncClient) -> None:
    response = await client.post("/permissions/sync")
    assert response.status_code == 200
    assert response.json() == {"permissions": 3, "permission_groups": 5}

    response = await client.get("/permissions/permission-groups/tree")
    assert response.status_code == 200
    tree = response.json()
    assert [node["name"] for node in tree] == ["g1", "g2"]
    assert [node["name"] for node in tree[0]["permission_groups"]] == ["g1.a", "g1.b"]


@pytest.mark.asyncio
async def test_role_lifecycle_and_checks(client: AsyncClient) -> None:
    await client.post("/permissions/sync")
    role = await _create_role(client, "editor", ["g1"])

    response = await client.put("/permissions/users/1/roles", json={
        "roleable_type": "app", "roleable_id": 1, "role_ids": [role["id"]],
    })
    assert response.status_code == 204

    check = {"user_id": 1, "roleable_type": "app", "roleable_id": 1, "resource": "/x", "action": "GET"}
    response = await client.post("/permissions/check", json=check)
    assert response.json() == {"has_permission": True}
    response = await client.post("/permissions/check", json={**check, "action": "POST"})
    assert response.json() == {"has_permission": False}

    response = await client.post("/permissions/check/groups", json={
        "user_id": 1, "roleable_type": "app", "roleable_id": 1, "permission_group_names": ["g1", "g2"],
    })
    assert response.json() == {"g1": True, "g2": False}

    response = await client.get("/permissions/check/any-role", params={
        "user_id": 1, "roleable_type": "app", "roleable_id": 1,
    })
    assert response.json() == {"has_permission": True}

    response = await client.put(f"/permissions/roles/{role['id']}", json={
        "title": "Writer", "permission_groups": ["g1.a"],
    })
    assert response.status_code == 200
    assert response.json()["title"] == "Writer"
    assert response.json()["name"] == "editor"

    response = await client.get(f"/permissions/roles/{role['id']}/permission-groups")
    assert [g["name"] for g in response.json()] == ["g1.a"]

    response = await client.post("/permissions/check", json={**check, "action": "POST"})
    assert response.json() == {"has_permission": True}

    response = await client.delete(f"/permissions/roles/{role['id']}")
    assert response.status_code == 204
    response = await client.get("/permissions/users/1/roles", params={"roleable_type": "app", "roleable_id": 1})
    assert response.json() == []


@pytest.mark.asyncio
async def test_errors_are_mapped_to_status_codes(client: AsyncClient) -> None:
    await client.post("/permissions/sync")

    response = await client.post("/permissions/roles", json={
        "roleable_type": "app", "roleable_id": 1, "name": "empty", "permission_groups": [],
    })
    assert response.status_code == 400
    assert "at least one permission group" in response.json()["detail"]

    response = await client.put("/permissions/roles/999", json={"permission_groups": ["g1"]})
    assert response.status_code == 404

    response = await client.get("/permissions/roles", params={"roleable_type": "app", "roleable_id": 1})
    assert response.json() == []


@pytest.mark.asyncio
async def test_preset_roles_and_roleable_ids(client: AsyncClient) -> None:
    await client.post("/permissions/sync")

    for roleable_id in (3, 1):
        response = await client.post("/permissions/roles/preset", json={"roleable_type": "app", "roleable_id": roleable_id})
        assert [r["name"] for r in response.json()] == ["r1", "r2"]

    response = await client.get("/permissions/roles", params={"roleable_type": "app", "roleable_id": 3})
    r1 = response.json()[0]
    await client.put("/permissions/users/4/roles", json={"roleable_type": "app", "roleable_id": 3, "role_ids": [r1["id"]]})

    response = await client.get("/permissions/users/4/roleable-ids", params=[("roleable_type", "app"), ("roleable_type", "team")])
    assert response.json() == {"app": [3]}


@pytest.mark.asyncio
async def test_migrations_endpoint(client: AsyncClient) -> None:
    response = await client.get("/permissions/migrations")

    assert response.status_code == 200
    assert "CREATE TABLE user_roles" in response.text


@pytest.mark.asyncio
async def test_require_permission(client: AsyncClient, caplog) -> None:
    guard_log = logging.getLogger("rbac_engine.features.permissions.dependencies")
    guard_log.addHandler(caplog.handler)
    await client.post("/permissions/sync")
    role = await _create_role(client, "viewer", ["g1"], roleable_id=5)
    await client.put("/permissions/users/2/roles", json={"roleable_type": "app", "roleable_id": 5, "role_ids": [role["id"]]})

    guarded = FastAPI()

    @guarded.get("/apps/{roleable_id}/x")
    async def read_x(roleable_id: int, user_id: int = Depends(require_permission("/x", "GET", "app"))):
        return {"user_id": user_id, "roleable_id": roleable_id}

    guarded.dependency_overrides = app.dependency_overrides
    async with AsyncClient(transport=ASGITransport(app=guarded), base_url="http://test") as guarded_client:
        allowed = await guarded_client.get("/apps/5/x", headers={"X-User-ID": "2"})
        other_owner = await guarded_client.get("/apps/6/x", headers={"X-User-ID": "2"})
        other_user = await guarded_client.get("/apps/5/x", headers={"X-User-ID": "3"})
        anonymous = await guarded_client.get("/apps/5/x")
    guard_log.removeHandler(caplog.handler)

    assert allowed.status_code == 200
    assert allowed.json() == {"user_id": 2, "roleable_id": 5}
    assert other_owner.status_code == 403
    assert other_user.status_code == 403
    assert anonymous.status_code == 422
    assert "Denied GET on /x to user 3 in app:5" in caplog.text


@pytest.mark.asyncio
async def test_check_routes_are_rate_limited_per_user(client: AsyncClient, monkeypatch) -> None:
    monkeypatch.setattr(config, "CHECK_RATE_LIMIT", "2/minute")
    params = {"user_id": 1, "roleable_type": "app", "roleable_id": 1}

    statuses = [
        (await client.get("/permissions/check/any-role", params=params, headers={"X-User-ID": "1"})).status_code
        for _ in range(3)
    ]
    limited = await client.get("/permissions/check/any-role", params=params, headers={"X-User-ID": "1"})
    other_user = await client.get("/permissions/check/any-role", params=params, headers={"X-User-ID": "2"})

    assert statuses == [200, 200, 429]
    assert limited.status_code == 429
    assert limited.json() == {"error": "You are going too fast"}
    assert other_user.status_code == 200
