"""Root, health check and error envelope."""

import main


def test_root(anon_client):
    resp = anon_client.get("/")
    assert resp.status_code == 200
    assert resp.text == "SeaBite Server Running"


def test_health_ok(anon_client, monkeypatch):
    monkeypatch.setattr(main, "ping_database", lambda: True)
    resp = anon_client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_health_down(anon_client, monkeypatch):
    monkeypatch.setattr(main, "ping_database", lambda: False)
    resp = anon_client.get("/health")
    assert resp.status_code == 503
    assert resp.json() == {"status": "down"}


def test_unknown_route(anon_client):
    resp = anon_client.get("/api/does-not-exist")
    assert resp.status_code == 404
    assert resp.json() == {"ok": False, "message": "Route not found"}


def test_unhandled_error_is_500(monkeypatch):
    from fastapi.testclient import TestClient

    def broken(**kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(main, "list_products", broken)
    client = TestClient(main.app, raise_server_exceptions=False)

    resp = client.get("/api/products")
    assert resp.status_code == 500
    assert resp.json() == {"ok": False, "message": "Internal server error"}
