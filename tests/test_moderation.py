import httpx
import pytest

from romoderate.routers import moderation as moderation_router
from romoderate.services import accounts, moderation, webhooks
from romoderate.utils import iso_in

from conftest import login, make_server, make_user, run

ROBLOX_RESTRICTION = "https://apis.roblox.com/cloud/v2/universes/55/user-restrictions/321"
WEBHOOK = "https://hooks.example.com/appeals"


@pytest.fixture(autouse=True)
def no_webhook_delay(monkeypatch):
    monkeypatch.setattr(webhooks, "WEBHOOK_RETRY_DELAY_SECONDS", 0)


@pytest.fixture
def cloud_server(owner_client, server):
    owner_client.patch(
        f"/api/servers/{server['id']}/settings",
        json={"roblox_api_key": "cloud-key", "roblox_universe_id": "55", "appeal_webhook_url": WEBHOOK},
    )
    return server


def _ban(client, server, roblox_user_id="321", **extra):
    resp = client.post(
        "/api/bans",
        json={"server_id": server["id"], "roblox_user_id": roblox_user_id, "roblox_username": "Player", "reason": "Exploiting", **extra},
    )
    assert resp.status_code == 201
    return resp.json()


def test_ban_create_list_and_unban_via_patch(owner_client, server):
    ban = _ban(owner_client, server)
    assert ban["active"] is True
    assert owner_client.get("/api/bans", params={"serverId": server["id"]}).json()[0]["id"] == ban["id"]

    updated = owner_client.patch(f"/api/bans/{ban['id']}", json={"active": False}).json()
    assert updated["active"] is False
    actions = [entry["action"] for entry in owner_client.get(f"/api/servers/{server['id']}/moderation-logs").json()]
    assert sorted(actions) == ["ban", "unban"]


def test_ban_requires_team_access(server):
    stranger = login(make_user("200", "stranger"))
    resp = stranger.post(
        "/api/bans",
        json={"server_id": server["id"], "roblox_user_id": "1", "roblox_username": "x", "reason": "y"},
    )
    assert resp.status_code == 403


def test_expired_ban_is_deactivated_on_read(owner_client, server):
    _ban(owner_client, server, expires_at="2000-01-01T00:00:00+00:00")
    bans = owner_client.get(f"/api/servers/{server['id']}/bans", params={"status": "active"}).json()
    assert bans == []
    inactive = owner_client.get(f"/api/servers/{server['id']}/bans", params={"status": "inactive"}).json()
    assert inactive[0]["metadata"]["expired"] is True


def test_appeal_lifecycle_with_roblox_unban_and_webhook_retry(owner_client, owner, cloud_server, upstream):
    attempts = []

    def flaky_webhook(request):
        attempts.append(request)
        return httpx.Response(500 if len(attempts) == 1 else 204)

    upstream.add("POST", WEBHOOK, flaky_webhook)
    upstream.add("PATCH", ROBLOX_RESTRICTION, httpx.Response(200, json={}))

    ban = _ban(owner_client, cloud_server)
    player = login(make_user("300", "banned_player"))
    appeal = player.post(
        "/api/appeals",
        json={"ban_id": ban["id"], "server_id": cloud_server["id"], "appeal_text": "I was wrongly banned"},
    )
    assert appeal.status_code == 201
    appeal = appeal.json()
    assert appeal["status"] == "pending"
    assert len(attempts) == 2
    assert attempts[-1].read()

    duplicate = player.post(
        "/api/appeals",
        json={"ban_id": ban["id"], "server_id": cloud_server["id"], "appeal_text": "again"},
    )
    assert duplicate.status_code == 409

    owner_notes = run(accounts.list_notifications(owner["id"]))
    assert owner_notes[0]["title"] == "New appeal"

    reviewed = owner_client.patch(f"/api/appeals/{appeal['id']}", json={"status": "approved", "review_note": "Fair"})
    assert reviewed.status_code == 200
    body = reviewed.json()
    assert body["appeal"]["status"] == "approved"
    assert body["ban_updated"] is True
    assert body["roblox_unbanned"] is True

    restored = run(moderation.get_ban(ban["id"]))
    assert restored["active"] is False
    assert restored["metadata"]["unbanned_via_appeal"] is True
    patch_calls = upstream.requests_to("PATCH", ROBLOX_RESTRICTION)
    assert patch_calls[0].headers["x-api-key"] == "cloud-key"

    again = owner_client.patch(f"/api/appeals/{appeal['id']}", json={"status": "rejected"})
    assert again.status_code == 409


def test_appeal_review_is_owner_only_and_validates_status(owner_client, server):
    ban = _ban(owner_client, server)
    player = login(make_user("300", "banned_player"))
    appeal = player.post("/api/appeals", json={"ban_id": ban["id"], "server_id": server["id"], "appeal_text": "please"}).json()

    assert player.patch(f"/api/appeals/{appeal['id']}", json={"status": "approved"}).status_code == 403
    assert owner_client.patch(f"/api/appeals/{appeal['id']}", json={"status": "maybe"}).status_code == 400

    rejected = owner_client.patch(f"/api/appeals/{appeal['id']}", json={"status": "rejected"}).json()
    assert rejected["ban_updated"] is False
    assert run(moderation.get_ban(ban["id"]))["active"] is True
    assert run(accounts.list_notifications(player_id(player)))[0]["title"] == "Appeal rejected"


def player_id(test_client):
    return test_client.get("/api/auth/me").json()["id"]


def test_appeal_for_ban_in_other_server_is_404(owner_client, server, owner):
    ban = _ban(owner_client, server)
    other = make_server(owner, discord_server_id="902")
    resp = owner_client.post("/api/appeals", json={"ban_id": ban["id"], "server_id": other["id"], "appeal_text": "x"})
    assert resp.status_code == 404


def test_moderation_actions(owner_client, cloud_server, upstream):
    upstream.add("PATCH", ROBLOX_RESTRICTION, httpx.Response(200, json={}))
    sid = cloud_server["id"]

    missing_duration = owner_client.post("/api/moderation/action", json={"server_id": sid, "action": "tempban", "roblox_user_id": "321"})
    assert missing_duration.status_code == 400

    tempban = owner_client.post(
        "/api/moderation/action",
        json={"server_id": sid, "action": "tempban", "roblox_user_id": "321", "reason": "Spam", "duration_days": 2},
    ).json()
    assert tempban["ban"]["expires_at"]
    assert tempban["roblox"]["success"] is True
    restriction = upstream.requests_to("PATCH", ROBLOX_RESTRICTION)[0]
    assert b'"duration":"172800s"' in restriction.read().replace(b" ", b"")

    warned = owner_client.post(
        "/api/moderation/action",
        json={"server_id": sid, "action": "warn", "roblox_user_id": "321", "reason": "Behave"},
    ).json()
    assert warned["warning"]["active"] is True
    assert warned["warning"]["metadata"]["warnings"][0]["reason"] == "Behave"

    unbanned = owner_client.post("/api/moderation/action", json={"server_id": sid, "action": "unban", "roblox_user_id": "321"}).json()
    assert unbanned["ban"]["active"] is False
    again = owner_client.post("/api/moderation/action", json={"server_id": sid, "action": "unban", "roblox_user_id": "321"})
    assert again.status_code == 404

    stats = owner_client.get(f"/api/servers/{sid}/moderation-stats").json()
    assert stats["summary"]["tempbans"] == 1
    assert stats["summary"]["warnings"] == 1
    assert stats["summary"]["unbans"] == 1


def test_warning_without_ban_is_recorded_inactive(owner_client, server):
    warned = owner_client.post(
        "/api/moderation/action",
        json={"server_id": server["id"], "action": "warn", "roblox_user_id": "999", "reason": "First warning"},
    ).json()
    assert warned["warning"]["active"] is False
    assert warned["warning"]["metadata"]["type"] == "warning"


def test_tickets_and_filters(owner_client, server):
    reporter = login(make_user("400", "reporter"))
    ticket = reporter.post(
        "/api/tickets",
        json={"server_id": server["id"], "subject": "Exploiter in lobby", "description": "Flying around"},
    )
    assert ticket.status_code == 201
    ticket = ticket.json()
    assert ticket["priority"] == "medium"

    assert reporter.patch(f"/api/tickets/{ticket['id']}", json={"status": "closed"}).status_code == 403
    closed = owner_client.patch(f"/api/tickets/{ticket['id']}", json={"status": "closed"}).json()
    assert closed["closed_by"]
    assert closed["closed_at"]

    found = owner_client.get(f"/api/servers/{server['id']}/tickets", params={"search": "exploiter"}).json()
    assert [t["id"] for t in found] == [ticket["id"]]
    assert owner_client.get(f"/api/servers/{server['id']}/tickets", params={"status": "open"}).json() == []
    assert owner_client.get(f"/api/servers/{server['id']}/tickets", params={"dateFrom": "2999-01-01T00:00:00Z"}).json() == []


def test_ticket_panel_deploy(owner_client, server, upstream):
    upstream.add("POST", "https://discord.com/api/v10/channels/55/messages", httpx.Response(200, json={"id": "msg-1"}))
    panel = owner_client.post(f"/api/servers/{server['id']}/ticket-panels", json={"channel_id": "55", "title": "Support"}).json()
    deployed = owner_client.post(f"/api/servers/{server['id']}/ticket-panels/{panel['id']}/deploy").json()
    assert deployed["message_id"] == "msg-1"
    sent = upstream.requests_to("POST", "https://discord.com/api/v10/channels/55/messages")[0]
    assert f"ticket_open:{panel['id']}".encode() in sent.read()


def _member_client(server, owner):
    member = make_user("250", "moderator")
    run(accounts.add_member(server["id"], member["id"], invited_by=owner["id"]))
    return login(member)


def test_ban_and_ticket_transitions_are_owner_only(owner_client, owner, server):
    ban = _ban(owner_client, server)
    member = _member_client(server, owner)

    assert member.get("/api/bans", params={"serverId": server["id"]}).status_code == 200
    assert member.patch(f"/api/bans/{ban['id']}", json={"active": False}).status_code == 403
    assert run(moderation.get_ban(ban["id"]))["active"] is True

    ticket = member.post("/api/tickets", json={"server_id": server["id"], "subject": "Help", "description": "Stuck"}).json()
    assert member.patch(f"/api/tickets/{ticket['id']}", json={"status": "closed"}).status_code == 403
    assert owner_client.patch(f"/api/tickets/{ticket['id']}", json={"status": "closed"}).json()["status"] == "closed"

    via_action = member.post(
        "/api/moderation/action",
        json={"server_id": server["id"], "action": "unban", "roblox_user_id": "321"},
    )
    assert via_action.status_code == 200


def test_warning_keeps_appeal_history_on_lifted_ban(owner_client, server):
    ban = _ban(owner_client, server)
    player = login(make_user("300", "banned_player"))
    appeal = player.post("/api/appeals", json={"ban_id": ban["id"], "server_id": server["id"], "appeal_text": "sorry"}).json()
    owner_client.patch(f"/api/appeals/{appeal['id']}", json={"status": "approved"})

    warned = owner_client.post(
        "/api/moderation/action",
        json={"server_id": server["id"], "action": "warn", "roblox_user_id": "321", "reason": "spam chat"},
    ).json()
    assert warned["warning"]["id"] == ban["id"]

    stored = run(moderation.get_ban(ban["id"]))
    assert stored["reason"] == "Exploiting"
    assert stored["active"] is False
    assert stored["metadata"]["unbanned_via_appeal"] is True
    assert stored["metadata"]["appeal_id"] == appeal["id"]
    assert [w["reason"] for w in stored["metadata"]["warnings"]] == ["spam chat"]


def test_rebanning_a_warned_player_keeps_warnings(owner_client, server):
    sid = server["id"]
    owner_client.post("/api/moderation/action", json={"server_id": sid, "action": "warn", "roblox_user_id": "77", "reason": "first"})
    banned = owner_client.post(
        "/api/moderation/action",
        json={"server_id": sid, "action": "ban", "roblox_user_id": "77", "reason": "second strike"},
    ).json()["ban"]
    assert banned["active"] is True
    assert "type" not in banned["metadata"]
    assert [w["reason"] for w in banned["metadata"]["warnings"]] == ["first"]


def test_ban_action_records_alt_detection_and_enforcement(owner_client, cloud_server, upstream, monkeypatch):
    events = []

    async def record(event_type, data=None):
        events.append((event_type, data))

    monkeypatch.setattr(moderation_router, "broadcast", record)
    upstream.add(
        "GET",
        "https://users.roblox.com/v1/users/321",
        httpx.Response(200, json={"id": 321, "name": "Fresh", "displayName": "Fresh", "description": "", "created": iso_in(-2 * 86400)}),
    )
    upstream.add("PATCH", ROBLOX_RESTRICTION, httpx.Response(200, json={}))

    ban = owner_client.post(
        "/api/moderation/action",
        json={"server_id": cloud_server["id"], "action": "ban", "roblox_user_id": "321", "reason": "Exploiting"},
    ).json()["ban"]

    alt = ban["metadata"]["alt_detection"]
    assert alt["is_likely_alt"] is True
    assert alt["account_age_days"] == 2
    assert ban["metadata"]["roblox_enforced"] is True
    assert ban["metadata"]["roblox_response"]["success"] is True
    assert ban["metadata"]["roblox_response"]["timestamp"]

    sent = upstream.requests_to("PATCH", ROBLOX_RESTRICTION)[0].read().replace(b" ", b"")
    assert b'"excludeAltAccounts":true' in sent

    owner_client.post(
        "/api/moderation/action",
        json={"server_id": cloud_server["id"], "action": "warn", "roblox_user_id": "321", "reason": "again"},
    )
    assert [name for name, _ in events] == ["ban_created", "warning_issued"]
    assert events[0][1]["roblox_enforced"] is True
    assert events[1][1]["roblox_user_id"] == "321"


def test_failed_roblox_enforcement_is_stored_on_ban(owner_client, cloud_server, upstream):
    upstream.add("PATCH", ROBLOX_RESTRICTION, httpx.Response(403, text="forbidden"))
    ban = owner_client.post(
        "/api/moderation/action",
        json={"server_id": cloud_server["id"], "action": "ban", "roblox_user_id": "321"},
    ).json()["ban"]
    assert ban["metadata"]["roblox_enforced"] is False
    assert ban["metadata"]["roblox_response"]["status_code"] == 403
    assert ban["metadata"]["alt_detection"] is None
