import pytest
from fastapi.testclient import TestClient

from stocksync.config import settings
from stocksync.models.run_log import clear_run_log
from stocksync.sync.pipeline import Reconciler
from tests.fakes import FakeErp, FakeStorefront, inv, mapping

AUTH = ("admin", "s3cret")


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(settings, "DATABASE_URL", "sqlite+aiosqlite://")
    monkeypatch.setattr(settings, "AUTO_SYNC_ENABLED", False)
    monkeypatch.setattr(settings, "ADMIN_USER", "admin")
    monkeypatch.setattr(settings, "ADMIN_PASS", "s3cret")
    clear_run_log()
    from stocksync.main_app import app
    with TestClient(app) as c:
        yield c


@pytest.fixture
def shop():
    return FakeStorefront({"W1": "outofstock", "W2": "instock"})


@pytest.fixture
def fake_reconciler(client, shop):
    state = client.app.state
    state.reconciler = Reconciler(
        state.run_guard,
        state.recorder,
        state.reconciler.sessionmaker,
        erp_factory=lambda: FakeErp(
            [inv("E1", available=4), inv("E2", sellable=0)],
            [mapping("W1", "E1"), mapping("W2", "E2")],
        ),
        storefront_factory=lambda site: shop,
    )
    return state.reconciler


def test_root_is_public(client):
    r = client.get("/")
    assert r.status_code == 200
    assert r.json()["status"] == "running"

def test_api_requires_admin(client):
    assert client.get("/api/sync/status").status_code == 401
    assert client.get("/api/sites", auth=("admin", "wrong")).status_code == 401
    assert client.get("/api/sync/status", auth=AUTH).status_code == 200

def test_site_crud_never_returns_secret(client):
    r = client.post("/api/sites", auth=AUTH, json={
        "name": "Alpha", "base_url": "https://alpha.test/", "api_key": "ck_1", "api_secret": "cs_1",
    })
    assert r.status_code == 200
    site = r.json()["data"]
    assert site["base_url"] == "https://alpha.test"
    assert "api_secret" not in site

    r = client.patch(f"/api/sites/{site['id']}", auth=AUTH, json={"enabled": False})
    assert r.json()["data"]["enabled"] is False
    assert client.get("/api/sites?enabled_only=true", auth=AUTH).json()["data"] == []

    assert client.delete(f"/api/sites/{site['id']}", auth=AUTH).json() == {"success": True}
    assert client.delete(f"/api/sites/{site['id']}", auth=AUTH).status_code == 404

def test_site_filter_upsert(client):
    site = client.post("/api/sites", auth=AUTH, json={
        "name": "Alpha", "base_url": "https://alpha.test", "api_key": "ck", "api_secret": "cs",
    }).json()["data"]

    empty = client.get(f"/api/sync/site-filters?site_id={site['id']}", auth=AUTH).json()["data"]
    assert empty["category_filters"] == []

    body = {"site_id": site["id"], "exclude_sku_prefixes": "OLD-", "category_filters": ["Shoes", "Bags"]}
    assert client.post("/api/sync/site-filters", auth=AUTH, json=body).json()["success"] is True
    body["exclude_warehouses"] = "WH9"
    data = client.post("/api/sync/site-filters", auth=AUTH, json=body).json()["data"]
    assert data["exclude_warehouses"] == "WH9"
    assert data["category_filters"] == ["Shoes", "Bags"]

    missing = {"site_id": "nope"}
    assert client.post("/api/sync/site-filters", auth=AUTH, json=missing).status_code == 404

def test_run_pass_and_read_back_batches(client, fake_reconciler, shop):
    client.post("/api/sites", auth=AUTH, json={
        "name": "Alpha", "base_url": "https://alpha.test", "api_key": "ck", "api_secret": "cs",
    })

    r = client.post("/api/sync/run", auth=AUTH)
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert "skipped" not in body
    assert body["stats"]["total_synced_to_instock"] == 1
    assert body["stats"]["total_unchanged"] == 0
    assert body["stats"]["total_synced_to_outofstock"] == 1
    assert sorted(shop.updates) == [("W1", "instock"), ("W2", "outofstock")]

    batches = client.get("/api/sync/batches", auth=AUTH).json()["data"]
    assert [b["id"] for b in batches] == [body["batch_id"]]
    detail = client.get(f"/api/sync/batches/{body['batch_id']}", auth=AUTH).json()["data"]
    assert detail["status"] == "completed"
    assert detail["sites"][0]["site_name"] == "Alpha"
    assert len(detail["sites"][0]["details"]) == 2

    status = client.get("/api/sync/status", auth=AUTH).json()["data"]
    assert status["running"] is False
    assert status["last_outcome"]["batch_id"] == body["batch_id"]

    logs = client.get(f"/api/sync/logs?batch_id={body['batch_id']}", auth=AUTH).json()["data"]
    assert any(e["message"] == "pass completed" for e in logs)

def test_run_while_running_is_skipped(client, fake_reconciler):
    guard = client.app.state.run_guard
    assert guard.try_acquire()
    try:
        body = client.post("/api/sync/run", auth=AUTH).json()
    finally:
        guard.release()
    assert body["success"] is True
    assert body["skipped"] is True
    assert client.get("/api/sync/batches", auth=AUTH).json()["data"] == []

def test_batch_queries_validate_input(client):
    assert client.get("/api/sync/batches?status=weird", auth=AUTH).status_code == 400
    assert client.get("/api/sync/batches/missing", auth=AUTH).status_code == 404

def test_cleanup(client):
    r = client.post("/api/sync/cleanup", auth=AUTH)
    assert r.json() == {"success": True, "cleaned": 0}

def test_erp_ping(client, monkeypatch):
    class PingOnly:
        async def __aenter__(self):
            return self

        async def __aexit__(self, *exc):
            return None

        async def ping(self):
            return {"success": False, "error": "engine disabled"}

    monkeypatch.setattr("stocksync.routes.H3YunClient.from_settings", classmethod(lambda cls: PingOnly()))
    assert client.get("/api/erp/ping", auth=AUTH).json() == {"success": False, "error": "engine disabled"}
