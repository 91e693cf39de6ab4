from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

from . import bot
from .clients import close_http_clients, init_http_client
from .routers.admin import router as admin_router
from .routers.analytics import router as analytics_router
from .routers.auth import router as auth_router
from .routers.bot_api import router as bot_api_router
from .routers.game import router as game_router
from .routers.health import router as health_router
from .routers.interactions import router as interactions_router
from .routers.keys import router as keys_router
from .routers.lookups import router as lookups_router
from .routers.marketplace import router as marketplace_router
from .routers.moderation import router as moderation_router
from .routers.realtime import router as realtime_router
from .routers.servers import router as servers_router
from .routers.shifts import router as shifts_router
from .routers.team import router as team_router
from .services import accounts
from .services.database import StorageError
from .settings import CORS_ORIGINS, validate_required_envs
from .ui import render_error
from .utils import wants_html


@asynccontextmanager
async def app_lifespan(app: FastAPI):
    await init_http_client()
    await accounts.ensure_default_admin()
    bot.start_bot()

    try:
        yield
    finally:
        await bot.stop_bot()
        await close_http_clients()


def create_app() -> FastAPI:
    validate_required_envs()

    logging.basicConfig(level=logging.INFO)

    app = FastAPI(title="RoModerate", lifespan=app_lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response: Response = await call_next(request)
        response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
        return response

    @app.middleware("http")
    async def log_api_requests(request: Request, call_next):
        if not request.url.path.startswith("/api/"):
            return await call_next(request)
        started = time.perf_counter()
        response: Response = await call_next(request)
        logging.info(
            "%s %s %s %.1fms",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - started) * 1000,
        )
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if wants_html(request):
            if exc.status_code == 404:
                return render_error("Page not found", "We couldn't find that page. Check the link or return home.", status_code=404)
            msg = exc.detail if isinstance(exc.detail, str) else "Something went wrong."
            return render_error("Request failed", msg, status_code=exc.status_code)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        if wants_html(request):
            return render_error("Invalid input", "Please check the form and try again.", status_code=422)
        return JSONResponse(status_code=422, content={"detail": jsonable_encoder(exc.errors())})

    @app.exception_handler(StorageError)
    async def storage_exception_handler(request: Request, exc: StorageError):
        logging.error("Storage failure on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=503, content={"detail": "Database unavailable"})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logging.exception("Unhandled error: %s", exc)
        if wants_html(request):
            return render_error("Server error", "Unexpected error. Please try again.", status_code=500)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(admin_router)
    app.include_router(servers_router)
    app.include_router(moderation_router)
    app.include_router(game_router)
    app.include_router(shifts_router)
    app.include_router(team_router)
    app.include_router(keys_router)
    app.include_router(bot_api_router)
    app.include_router(lookups_router)
    app.include_router(analytics_router)
    app.include_router(marketplace_router)
    app.include_router(realtime_router)
    app.include_router(interactions_router)

    return app


app = create_app()
