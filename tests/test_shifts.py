from conftest import login, make_user


def test_shift_lifecycle(owner_client, server):
    started = owner_client.post("/api/shifts/start", json={"server_id": server["id"]})
    assert started.status_code == 201
    assert started.json()["status"] == "active"

    again = owner_client.post("/api/shifts/start", json={"server_id": server["id"]})
    assert again.status_code == 400

    owner_client.post(
        "/api/moderation/action",
        json={"server_id": server["id"], "action": "ban", "roblox_user_id": "321", "reason": "Exploiting"},
    )
    assert owner_client.get("/api/shifts/active").json()["shift"]["id"] == started.json()["id"]

    ended = owner_client.post("/api/shifts/end").json()
    assert ended["status"] == "completed"
    assert ended["duration_seconds"] >= 0
    assert ended["metrics"]["bans"] == 1

    assert owner_client.get("/api/shifts/active").json() == {"shift": None}
    assert owner_client.post("/api/shifts/end").status_code == 404
    assert len(owner_client.get("/api/shifts").json()) == 1


def test_shift_requires_server_and_team_access(owner_client, server):
    assert owner_client.post("/api/shifts/start", json={}).status_code == 400
    stranger = login(make_user("200", "stranger"))
    assert stranger.post(f"/api/servers/{server['id']}/shifts/start").status_code == 403


def test_server_scoped_shift_routes(owner_client, server):
    assert owner_client.post(f"/api/servers/{server['id']}/shifts/start").status_code == 201
    ended = owner_client.post(f"/api/servers/{server['id']}/shifts/end")
    assert ended.status_code == 200
    shifts = owner_client.get(f"/api/servers/{server['id']}/shifts").json()
    assert shifts[0]["status"] == "completed"
