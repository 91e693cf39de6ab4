from romoderate import bot
from romoderate.services import accounts

from conftest import make_server, make_user, run


def _admin():
    return run(accounts.create_admin("root", "hunter22"))


def test_admin_login_rejects_bad_password(client):
    _admin()
    resp = client.post("/api/admin/login", json={"username": "root", "password": "wrong"})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Invalid credentials"


def test_admin_session_and_stats(client):
    _admin()
    owner = make_user()
    make_server(owner)

    resp = client.post("/api/admin/login", json={"username": "root", "password": "hunter22"})
    assert resp.status_code == 200
    assert "password_hash" not in resp.json()

    assert client.get("/api/admin/me").json()["username"] == "root"
    stats = client.get("/api/admin/stats").json()
    assert stats["users"] == 1
    assert stats["servers"] == 1
    assert stats["pending_appeals"] == 0

    assert client.post("/api/admin/logout").status_code == 204
    assert client.get("/api/admin/me").status_code == 401


def test_user_session_is_not_an_admin_session(owner_client):
    assert owner_client.get("/api/admin/stats").status_code == 401


def test_bot_restart_requires_admin(client, monkeypatch):
    calls = []

    async def fake_restart(token=None):
        calls.append(token)
        return True

    monkeypatch.setattr(bot, "restart_bot", fake_restart)
    assert client.post("/api/bot/restart").status_code == 401

    _admin()
    client.post("/api/admin/login", json={"username": "root", "password": "hunter22"})
    resp = client.post("/api/bot/restart")
    assert resp.status_code == 200
    assert resp.json()["restarted"] is True
    assert calls == [None]


def test_password_hashes_are_bcrypt():
    admin = _admin()
    stored = run(accounts.get_admin(admin["id"]))
    assert stored["password_hash"].startswith("$2")
    assert "hunter22" not in stored["password_hash"]
