import asyncio
import os

import nacl.signing

SIGNING_KEY = nacl.signing.SigningKey(b"\x07" * 32)

os.environ["DISCORD_CLIENT_ID"] = "1234567890"
os.environ["DISCORD_CLIENT_SECRET"] = "client-secret"
os.environ["DISCORD_REDIRECT_URI"] = "http://testserver/api/auth/discord/callback"
os.environ["DISCORD_PUBLIC_KEY"] = SIGNING_KEY.verify_key.encode().hex()
os.environ["DISCORD_TOKEN"] = ""
os.environ["DISCORD_BOT_TOKEN"] = ""
os.environ["DISCORD_CHANGELOG_WEBHOOK"] = ""
os.environ["APPEAL_WEBHOOK_URL"] = ""
os.environ["BLOXLINK_API_KEY"] = ""
os.environ["SUPABASE_URL"] = ""
os.environ["SUPABASE_KEY"] = ""
os.environ["PORTAL_SECRET_KEY"] = "test-secret-key"
os.environ["SESSION_COOKIE_SECURE"] = "false"
os.environ["ADMIN_PASSWORD"] = ""
os.environ["PUBLIC_BASE_URL"] = ""

import httpx
import pytest
from fastapi.testclient import TestClient

from romoderate import clients, state
from romoderate.app import app
from romoderate.services import accounts, sessions


class FakeUpstream:
    """Stands in for Discord, Roblox, Supabase and webhook receivers."""

    def __init__(self):
        self.routes = {}
        self.calls = []

    def add(self, method, url, response):
        parsed = httpx.URL(url)
        self.routes[(method.upper(), parsed.host, parsed.path)] = response

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        key = (request.method, request.url.host, request.url.path)
        response = self.routes.get(key)
        if response is None:
            return httpx.Response(404, json={"message": "Unknown"})
        if callable(response):
            return response(request)
        return response

    def requests_to(self, method, url):
        parsed = httpx.URL(url)
        return [
            r for r in self.calls
            if r.method == method.upper() and r.url.host == parsed.host and r.url.path == parsed.path
        ]


@pytest.fixture(autouse=True)
def upstream():
    state.reset()
    fake = FakeUpstream()
    clients.install_transport(httpx.MockTransport(fake.handler))
    yield fake
    state.reset()
    clients.http_client = None


@pytest.fixture
def client():
    return TestClient(app)


def run(coro):
    return asyncio.run(coro)


def make_user(discord_id="100000000000000001", username="owner"):
    return run(
        accounts.upsert_discord_user(
            {"id": discord_id, "username": username, "avatar": None},
            {"access_token": "access", "refresh_token": "refresh"},
        )
    )


def make_server(owner, discord_server_id="900000000000000001", name="Test Server", settings=None):
    server = run(accounts.create_server(owner["id"], discord_server_id, name, None))
    if settings:
        server = run(accounts.update_server(server["id"], {"settings": settings}))
    return server


def login(user):
    test_client = TestClient(app)
    token = sessions.create_session(user["id"])
    test_client.cookies.set("session", sessions.session_cookie_value(token))
    return test_client


@pytest.fixture
def owner():
    return make_user()


@pytest.fixture
def server(owner):
    return make_server(owner)


@pytest.fixture
def owner_client(owner):
    return login(owner)
