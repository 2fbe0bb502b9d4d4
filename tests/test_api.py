"""HTTP surface tests: envelopes, status codes and the scoped CRUD routes."""

import pytest
from fastapi.testclient import TestClient

from conftest import COMPANY, SITE_A, SITE_B

from sitecache.app import app
from sitecache.service.runtime import get_runtime


@pytest.fixture
def client():
    runtime = get_runtime()
    runtime.remote.seed("companies", [{"_id": COMPANY, "name": "Mine"}])
    runtime.remote.seed(
        "sites",
        [
            {"_id": SITE_A, "name": "Tower", "companyId": COMPANY},
            {"_id": SITE_B, "name": "Depot", "companyId": COMPANY},
        ],
    )
    runtime.remote.auth.issue_token("eng", password="pw")
    with TestClient(app) as test_client:
        yield test_client


def _login(client):
    resp = client.post("/v1/auth/login", json={"username": "eng", "password": "pw"})
    assert resp.status_code == 200
    return resp.json()["data"]


def test_health(client):
    resp = client.get("/healthz")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "healthy"
    assert body["checks"]["session"]["authenticated"] is False
    assert resp.headers["Cache-Control"] == "no-store"


def test_unknown_collection_is_validation_error(client):
    resp = client.get("/v1/collections/widgets")

    assert resp.status_code == 400
    body = resp.json()
    assert body["status"] == "error"
    assert body["error"]["code"] == "validation_error"


def test_create_requires_login(client):
    resp = client.post("/v1/collections/materials", json={"name": "Cement"})

    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthorized"


def test_bad_credentials(client):
    resp = client.post("/v1/auth/login", json={"username": "eng", "password": "nope"})

    assert resp.status_code == 401
    assert resp.json()["error"]["message"] == "Invalid credentials"


def test_login_selects_first_listed_site(client):
    data = _login(client)

    assert data["success"] is True
    assert data["record"]["username"] == "eng"
    scope = client.get("/v1/scope").json()["data"]
    assert scope == {
        "company_id": COMPANY,
        "site_id": SITE_A,
        "generation": scope["generation"],
        "site_valid": True,
    }


def test_record_lifecycle(client):
    _login(client)

    created = client.post("/v1/collections/materials", json={"name": "Cement", "quantity": 3})
    assert created.status_code == 201
    identity = created.json()["data"]["record"]["_id"]

    patched = client.patch(f"/v1/collections/materials/{identity}", json={"quantity": 5})
    assert patched.status_code == 200
    assert patched.json()["data"]["record"]["quantity"] == 5

    listed = client.get("/v1/collections/materials").json()["data"]
    assert listed["name"] == "materials"
    assert [m["quantity"] for m in listed["items"]] == [5]

    deleted = client.delete(f"/v1/collections/materials/{identity}")
    assert deleted.status_code == 200
    assert client.get("/v1/collections/materials").json()["data"]["items"] == []


def test_missing_record_is_not_found(client):
    _login(client)

    resp = client.patch(
        "/v1/collections/materials/e0000000000000000000000e", json={"quantity": 1}
    )

    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "not_found"


def test_scope_switch_refreshes_collections(client):
    get_runtime().remote.seed("materials", [{"name": "Bricks", "siteId": SITE_B}])
    _login(client)

    resp = client.put("/v1/scope", json={"site_id": SITE_B})

    assert resp.status_code == 200
    assert resp.json()["data"]["site_id"] == SITE_B
    items = client.get("/v1/collections/materials").json()["data"]["items"]
    assert [m["name"] for m in items] == ["Bricks"]


def test_placeholder_site_refuses_writes(client):
    _login(client)
    client.put("/v1/scope", json={"site_id": "1"})

    resp = client.post("/v1/collections/materials", json={"name": "Cement"})

    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "refused"


def test_scope_rejects_unknown_fields(client):
    resp = client.put("/v1/scope", json={"project_id": "x"})

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "validation_error"


def test_refresh_reports_collections(client):
    _login(client)

    data = client.post("/v1/refresh").json()["data"]

    assert "materials" in data["applied"]
    assert data["failed"] == []


def test_name_list_routes(client):
    _login(client)

    added = client.post("/v1/collections/saved_trades", json="Mason")
    renamed = client.patch("/v1/collections/saved_trades/Mason", json="Head mason")

    assert added.status_code == 201
    assert renamed.status_code == 200
    items = client.get("/v1/collections/saved_trades").json()["data"]["items"]
    assert items == ["Head mason"]


def test_logout(client):
    _login(client)

    resp = client.post("/v1/auth/logout")

    assert resp.status_code == 200
    assert client.get("/healthz").json()["checks"]["session"]["authenticated"] is False
