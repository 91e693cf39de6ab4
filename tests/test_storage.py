import httpx
import pytest

from romoderate.services import database as db
from romoderate.services import supabase

from conftest import run

BASE = "https://project.supabase.co/rest/v1"


@pytest.fixture
def remote(monkeypatch):
    monkeypatch.setattr(supabase, "SUPABASE_URL", "https://project.supabase.co")
    monkeypatch.setattr(supabase, "SUPABASE_KEY", "service-key")


def test_memory_rows_are_isolated_copies():
    row = run(db.insert("bans", {"server_id": "s1", "metadata": {"a": 1}}))
    row["metadata"]["a"] = 2
    stored = run(db.get("bans", row["id"]))
    assert stored["metadata"] == {"a": 1}
    assert stored["created_at"] == stored["updated_at"]


def test_memory_filters_order_and_delete():
    for name in ("a", "b", "c"):
        run(db.insert("tickets", {"server_id": "s1", "subject": name, "created_at": f"2026-01-0{ord(name) - 96}T00:00:00+00:00"}))
    run(db.insert("tickets", {"server_id": "s2", "subject": "z"}))

    newest_first = run(db.select("tickets", {"server_id": "s1"}))
    assert [r["subject"] for r in newest_first] == ["c", "b", "a"]
    assert run(db.count("tickets", {"server_id": ["s1", "s2"]})) == 4
    assert run(db.delete_where("tickets", {"server_id": "s1"})) == 3
    assert run(db.count("tickets")) == 1


def test_remote_insert_and_select_use_postgrest(remote, upstream):
    def echo(request):
        assert request.headers["apikey"] == "service-key"
        assert request.headers["Prefer"] == "return=representation"
        return httpx.Response(201, json=[{"id": "r1", "server_id": "s1"}])

    upstream.add("POST", f"{BASE}/bans", echo)
    upstream.add("GET", f"{BASE}/bans", httpx.Response(200, json=[{"id": "r1", "server_id": "s1", "active": True}]))

    assert run(db.insert("bans", {"server_id": "s1"}))["id"] == "r1"
    rows = run(db.select("bans", {"server_id": "s1", "active": True, "expires_at": None}, limit=5))
    assert rows[0]["id"] == "r1"

    params = upstream.requests_to("GET", f"{BASE}/bans")[0].url.params
    assert params["server_id"] == "eq.s1"
    assert params["active"] == "eq.true"
    assert params["expires_at"] == "is.null"
    assert params["order"] == "created_at.desc"
    assert params["limit"] == "5"


def test_remote_failure_raises_storage_error(remote, upstream):
    upstream.add("GET", f"{BASE}/bans", httpx.Response(500, text="boom"))
    with pytest.raises(db.StorageError):
        run(db.select("bans"))


def test_remote_outage_surfaces_as_503(upstream, owner_client, remote):
    upstream.add("GET", f"{BASE}/users", httpx.Response(503, text="down"))
    resp = owner_client.get("/api/servers")
    assert resp.status_code == 503
    assert resp.json() == {"detail": "Database unavailable"}
