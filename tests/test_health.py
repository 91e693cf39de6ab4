import httpx

from romoderate.services import supabase


def test_health_in_memory(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "healthy"
    assert body["storage"] == "memory"
    assert body["bot_online"] is False
    assert body["bot_task"] == "not_started"
    assert resp.headers["X-Content-Type-Options"] == "nosniff"


def test_health_degraded_when_remote_store_unreachable(client, upstream, monkeypatch):
    monkeypatch.setattr(supabase, "SUPABASE_URL", "https://project.supabase.co")
    monkeypatch.setattr(supabase, "SUPABASE_KEY", "service-key")
    upstream.add("GET", "https://project.supabase.co/rest/v1/users", httpx.Response(500))

    resp = client.get("/api/health")
    assert resp.status_code == 503
    assert resp.json()["status"] == "degraded"
    assert resp.json()["storage"] == "supabase"

    upstream.add("GET", "https://project.supabase.co/rest/v1/users", httpx.Response(200, json=[]))
    assert client.get("/api/health").json()["status"] == "healthy"


def test_unknown_page_renders_html_for_browsers(client):
    resp = client.get("/no-such-page", headers={"Accept": "text/html"})
    assert resp.status_code == 404
    assert "Page not found" in resp.text
    assert client.get("/api/no-such-endpoint").json() == {"detail": "Not Found"}
