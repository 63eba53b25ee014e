from __future__ import annotations

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Garante que o pacote dashboard seja importável durante os testes locais
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dashboard.app import create_app  # noqa: E402
from dashboard.core.config import Settings  # noqa: E402


def _settings(tmp_path: Path, **overrides) -> Settings:
    values = dict(
        app_env="test",
        client_encryption_key="router-test-key",
        storage_backend="json",
        data_dir=tmp_path / "data",
        database_url="",
        lock_retries=20,
        lock_delay_ms=5,
        lock_stale_seconds=5.0,
        log_level="WARNING",
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture()
def client(tmp_path):
    return TestClient(create_app(_settings(tmp_path)))


def _create(client, **extra):
    body = {"name": "Ahmed", "email": "A@X.com", "password": "p1"}
    body.update(extra)
    return client.post("/api/clients", json=body)


def test_health(client):
    assert client.get("/health").json() == {"ok": True, "backend": "json"}


def test_create_and_list(client):
    resp = _create(client, company="ACME")
    assert resp.status_code == 201
    created = resp.json()["client"]
    assert created["email"] == "a@x.com"
    assert created["password"] == "p1"
    assert created["plan"] == "Starter"
    assert created["createdAt"].endswith("Z")

    listed = client.get("/api/clients").json()["clients"]
    assert listed == [created]

    redacted = client.get("/api/clients", params={"redact": "true"}).json()["clients"]
    assert "password" not in redacted[0]


def test_search(client):
    _create(client)
    _create(client, name="Bea", email="bea@y.com", notes="Renewal in March")
    names = lambda q: [c["name"] for c in client.get("/api/clients", params={"q": q}).json()["clients"]]  # noqa: E731
    assert names("march") == ["Bea"]
    assert names("A@X") == ["Ahmed"]
    assert sorted(names("")) == ["Ahmed", "Bea"]


def test_create_errors(client):
    assert _create(client).status_code == 201
    dup = _create(client, email="a@x.com")
    assert dup.status_code == 409
    assert dup.json()["detail"] == "A client with this email already exists."
    assert _create(client, email="broken", name="X").status_code == 400
    assert client.post("/api/clients", json={"name": "No Pass", "email": "n@x.com"}).status_code == 400


def test_patch_only_applies_sent_fields(client):
    created = _create(client, notes="first").json()["client"]
    resp = client.patch(f"/api/clients/{created['id']}", json={"plan": "Growth"})
    assert resp.status_code == 200
    updated = resp.json()["client"]
    assert updated["plan"] == "Growth"
    assert updated["password"] == "p1"
    assert updated["notes"] == "first"
    assert updated["createdAt"] == created["createdAt"]


def test_patch_errors(client):
    created = _create(client).json()["client"]
    empty = client.patch(f"/api/clients/{created['id']}", json={"password": ""})
    assert empty.status_code == 400
    assert client.get(f"/api/clients/{created['id']}").json()["client"]["password"] == "p1"
    assert client.patch("/api/clients/missing", json={"plan": "Growth"}).status_code == 404

    other = _create(client, email="b@x.com").json()["client"]
    assert client.patch(f"/api/clients/{other['id']}", json={"email": "A@x.com"}).status_code == 409


def test_delete(client):
    created = _create(client).json()["client"]
    assert client.delete(f"/api/clients/{created['id']}").json() == {"removed": True}
    assert client.delete(f"/api/clients/{created['id']}").status_code == 404
    assert client.get(f"/api/clients/{created['id']}").status_code == 404
    assert client.get("/api/clients").json() == {"clients": []}


def test_busy_lock_maps_to_503(tmp_path):
    settings = _settings(tmp_path, lock_retries=1, lock_delay_ms=1, lock_stale_seconds=60.0)
    client = TestClient(create_app(settings))
    client.get("/api/clients")
    (settings.data_dir / "clients.json.lock").write_text("1")
    resp = _create(client)
    assert resp.status_code == 503
    assert "Try again later" in resp.json()["detail"]


def test_unusable_data_dir_maps_to_503(tmp_path):
    settings = _settings(tmp_path)
    settings.data_dir.write_text("not a directory")
    client = TestClient(create_app(settings))
    resp = _create(client)
    assert resp.status_code == 503
    assert client.get("/api/clients").status_code == 503


def test_missing_key_fails_at_startup(tmp_path):
    from dashboard.core.crypto import EncryptionError

    with pytest.raises(EncryptionError):
        create_app(_settings(tmp_path, client_encryption_key=""))


def test_sql_backend_serves_same_contract(tmp_path):
    settings = _settings(tmp_path, storage_backend="sql", database_url=f"sqlite:///{tmp_path / 'router.db'}")
    client = TestClient(create_app(settings))
    assert client.get("/health").json()["backend"] == "sql"

    created = _create(client).json()["client"]
    assert _create(client, email="a@X.COM").status_code == 409
    updated = client.patch(f"/api/clients/{created['id']}", json={"status": "churn risk"}).json()["client"]
    assert updated["status"] == "Churn Risk"
    assert updated["password"] == "p1"
    assert client.delete(f"/api/clients/{created['id']}").json() == {"removed": True}
    assert client.get("/api/clients").json() == {"clients": []}
