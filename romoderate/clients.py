from __future__ import annotations

from typing import Optional

import httpx
from jinja2 import Environment, select_autoescape

DEFAULT_TIMEOUT = httpx.Timeout(15.0, connect=5.0)
DEFAULT_HEADERS = {"User-Agent": "RoModerate (+https://github.com/romoderate)"}

http_client: Optional[httpx.AsyncClient] = None
_fallback_client: Optional[httpx.AsyncClient] = None

JINJA_ENV = Environment(autoescape=select_autoescape(default_for_string=True, default=True))


def _build_client(transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=DEFAULT_TIMEOUT, headers=DEFAULT_HEADERS, transport=transport)


async def init_http_client() -> httpx.AsyncClient:
    global http_client
    if http_client is None:
        http_client = _build_client()
    return http_client


def install_transport(transport: httpx.AsyncBaseTransport) -> httpx.AsyncClient:
    """Route every outbound call through ``transport`` (used by tests and local tooling)."""
    global http_client
    http_client = _build_client(transport)
    return http_client


def get_http_client() -> httpx.AsyncClient:
    if http_client:
        return http_client
    # Calls made outside the app lifespan (CLI tasks, bot callbacks) share one lazy client.
    global _fallback_client
    if not _fallback_client:
        _fallback_client = _build_client()
    return _fallback_client


async def close_http_clients() -> None:
    global http_client, _fallback_client
    for client in (http_client, _fallback_client):
        if client:
            await client.aclose()
    http_client = None
    _fallback_client = None
