from datetime import datetime, timedelta, timezone

import httpx
import pytest

from romoderate.services import bloxlink_api

USERS = "https://users.roblox.com"
THUMBS = "https://thumbnails.roblox.com/v1/users/avatar-headshot"


def _profile(roblox_id=321, days_old=3, description=""):
    created = (datetime.now(timezone.utc) - timedelta(days=days_old)).isoformat()
    return {"id": roblox_id, "name": "Player", "displayName": "Player", "description": description, "created": created, "isBanned": False}


def test_player_lookup_by_username_with_alt_signals(owner_client, server, upstream):
    upstream.add("POST", f"{USERS}/v1/usernames/users", httpx.Response(200, json={"data": [{"id": 321, "name": "Player"}]}))
    upstream.add("GET", f"{USERS}/v1/users/321", httpx.Response(200, json=_profile()))
    upstream.add("GET", THUMBS, httpx.Response(200, json={"data": [{"imageUrl": "https://tr.rbxcdn.com/head.png"}]}))
    owner_client.post(
        "/api/bans",
        json={"server_id": server["id"], "roblox_user_id": "321", "roblox_username": "Player", "reason": "Exploiting"},
    )

    player = owner_client.get("/api/roblox/player/Player").json()

    assert player["id"] == "321"
    assert player["account_age_days"] == 3
    assert player["avatar_url"] == "https://tr.rbxcdn.com/head.png"
    assert "Account is less than a week old" in player["alt_detection"]["reasons"]
    assert player["active_ban"] is True
    assert player["bans"][0]["server_id"] == server["id"]


def test_player_lookup_by_id_falls_back_to_placeholder_avatar(owner_client, upstream):
    upstream.add("GET", f"{USERS}/v1/users/55", httpx.Response(200, json=_profile(55, days_old=900, description="veteran")))
    player = owner_client.get("/api/roblox/player/55").json()
    assert "Placeholder" in player["avatar_url"]
    assert player["bans"] == []
    assert player["active_ban"] is False


def test_player_lookup_not_found(owner_client, upstream):
    upstream.add("POST", f"{USERS}/v1/usernames/users", httpx.Response(200, json={"data": []}))
    assert owner_client.get("/api/roblox/player/nobody").status_code == 404


def test_bloxlink_lookup(owner_client, server, upstream, monkeypatch):
    assert owner_client.get("/api/lookup/bloxlink/123", params={"serverId": server["id"]}).status_code == 503

    monkeypatch.setattr(bloxlink_api, "BLOXLINK_API_KEY", "blox-key")
    guild = server["discord_server_id"]
    upstream.add(
        "GET",
        f"https://api.blox.link/v4/public/guilds/{guild}/discord-to-roblox/123",
        httpx.Response(200, json={"robloxID": "321"}),
    )
    upstream.add("GET", f"{USERS}/v1/users/321", httpx.Response(200, json=_profile()))
    found = owner_client.get("/api/lookup/bloxlink/123", params={"serverId": server["id"]}).json()
    assert found == {"discord_id": "123", "roblox_id": "321", "roblox_username": "Player"}

    sent = upstream.requests_to("GET", f"https://api.blox.link/v4/public/guilds/{guild}/discord-to-roblox/123")[0]
    assert sent.headers["Authorization"] == "blox-key"
    assert owner_client.get("/api/lookup/bloxlink/999", params={"serverId": server["id"]}).status_code == 404


def test_avatar_endpoint_uses_default_avatar(client):
    resp = client.get("/api/avatar/100000000000000005")
    assert resp.json()["avatar_url"].startswith("https://cdn.discordapp.com/embed/avatars/")
    assert client.get("/api/avatar/not-a-number").status_code == 400
