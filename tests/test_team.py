import httpx

from conftest import login, make_user

DISCORD = "https://discord.com/api/v10"


def test_member_management(owner_client, server):
    mod = make_user("200", "mod")
    mod_client = login(mod)
    assert mod_client.get("/api/bans", params={"serverId": server["id"]}).status_code == 403

    added = owner_client.post(f"/api/servers/{server['id']}/members", json={"user_id": mod["id"], "role": "moderator"})
    assert added.status_code == 201
    assert owner_client.post(f"/api/servers/{server['id']}/members", json={"user_id": mod["id"]}).status_code == 409
    assert owner_client.post(f"/api/servers/{server['id']}/members", json={"user_id": "ghost"}).status_code == 404

    assert mod_client.get("/api/bans", params={"serverId": server["id"]}).status_code == 200
    assert mod_client.post(f"/api/servers/{server['id']}/members", json={"user_id": mod["id"]}).status_code == 403

    members = owner_client.get(f"/api/servers/{server['id']}/members").json()
    assert members[0]["user"]["username"] == "mod"
    assert "access_token" not in members[0]["user"]

    member_id = added.json()["id"]
    updated = owner_client.patch(f"/api/servers/{server['id']}/members/{member_id}", json={"role": "admin"}).json()
    assert updated["role"] == "admin"
    assert owner_client.delete(f"/api/servers/{server['id']}/members/{member_id}").status_code == 204
    assert mod_client.get("/api/bans", params={"serverId": server["id"]}).status_code == 403


def test_invites(owner_client, server):
    invite = owner_client.post(f"/api/servers/{server['id']}/invites", json={"expires_in": 24, "max_uses": 3}).json()
    assert len(invite["code"]) == 32
    assert invite["expires_at"]
    listed = owner_client.get(f"/api/servers/{server['id']}/invites").json()
    assert listed[0]["usable"] is True
    assert owner_client.delete(f"/api/servers/{server['id']}/invites/{invite['id']}").status_code == 204


def test_notes_belong_to_author_or_owner(owner_client, server):
    mod = make_user("200", "mod")
    owner_client.post(f"/api/servers/{server['id']}/members", json={"user_id": mod["id"]})
    mod_client = login(mod)

    note = mod_client.post(f"/api/servers/{server['id']}/notes", json={"content": "Watch user 321"}).json()
    other = make_user("300", "other_mod")
    owner_client.post(f"/api/servers/{server['id']}/members", json={"user_id": other["id"]})
    other_client = login(other)

    assert other_client.patch(f"/api/servers/{server['id']}/notes/{note['id']}", json={"content": "x"}).status_code == 403
    assert owner_client.patch(f"/api/servers/{server['id']}/notes/{note['id']}", json={"content": "ok"}).json()["content"] == "ok"
    assert mod_client.delete(f"/api/servers/{server['id']}/notes/{note['id']}").status_code == 204


def test_auto_actions_crud(owner_client, server):
    created = owner_client.post(
        f"/api/servers/{server['id']}/auto-actions",
        json={"name": "Three strikes", "trigger": "warnings", "action": "tempban", "threshold": 3},
    ).json()
    assert created["enabled"] is True
    updated = owner_client.patch(f"/api/servers/{server['id']}/auto-actions/{created['id']}", json={"enabled": False}).json()
    assert updated["enabled"] is False
    assert owner_client.get(f"/api/servers/{server['id']}/auto-actions").json()[0]["id"] == created["id"]
    assert owner_client.delete(f"/api/servers/{server['id']}/auto-actions/{created['id']}").status_code == 204


def test_discord_user_lookup(owner_client, upstream):
    upstream.add("GET", f"{DISCORD}/users/123456", httpx.Response(200, json={"id": "123456", "username": "someone", "avatar": None}))
    found = owner_client.get("/api/discord/users/123456").json()
    assert found["username"] == "someone"
    assert found["avatar_url"].endswith("/embed/avatars/0.png")
    assert found["registered_user_id"] is None
    assert owner_client.get("/api/discord/users/999").status_code == 404
