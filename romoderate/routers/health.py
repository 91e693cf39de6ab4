from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from .. import bot
from ..services import supabase
from ..utils import now_iso

router = APIRouter()


@router.get("/api/health")
async def health():
    remote = supabase.is_supabase_ready()
    data = {
        "status": "healthy",
        "storage": "supabase" if remote else "memory",
        "bot_online": bot.is_bot_online(),
        "bot_task": bot.task_state(),
        "updated_at": now_iso(),
    }
    if remote and not await supabase.ping():
        data["status"] = "degraded"
        return JSONResponse(data, status_code=503, headers={"Cache-Control": "no-store"})
    return JSONResponse(data, headers={"Cache-Control": "no-store"})
