from __future__ import annotations

import asyncio
import logging
from typing import Optional

import discord

from . import state
from .services.realtime import broadcast
from .settings import BOT_EVENT_LOGGING, DISCORD_BOT_TOKEN

bot_client: Optional[discord.Client] = None


def current_token() -> Optional[str]:
    return state._bot_token or DISCORD_BOT_TOKEN


def is_bot_online() -> bool:
    return bool(bot_client and bot_client.is_ready())


def is_in_guild(guild_id: Optional[str]) -> bool:
    if not guild_id or not is_bot_online():
        return False
    try:
        return bot_client.get_guild(int(guild_id)) is not None
    except (TypeError, ValueError):
        return False


def bot_identity() -> Optional[dict]:
    if not is_bot_online() or not bot_client.user:
        return None
    user = bot_client.user
    return {
        "id": str(user.id),
        "username": user.name,
        "avatar": user.display_avatar.url if user.display_avatar else None,
        "guild_count": len(bot_client.guilds),
    }


def latency_ms() -> Optional[int]:
    if not is_bot_online():
        return None
    try:
        return int(float(bot_client.latency) * 1000)
    except (TypeError, ValueError, OverflowError):
        return None


def task_state() -> str:
    task = state._bot_task
    if task is None:
        return "not_started"
    if task.cancelled():
        return "cancelled"
    if task.done():
        return "done"
    return "running"


async def run_bot_forever() -> None:
    token = current_token()
    if not token:
        raise RuntimeError("DISCORD_BOT_TOKEN missing; bot client cannot start.")
    backoff = 2.0
    while True:
        try:
            logging.info("Starting Discord bot gateway connection...")
            await bot_client.start(token)
            backoff = 2.0
        except asyncio.CancelledError:
            break
        except discord.LoginFailure as exc:
            logging.error("Discord rejected the bot token; not retrying: %s", exc)
            break
        except Exception as exc:
            logging.exception("Discord bot task crashed: %s", exc)
        if bot_client.is_closed():
            bot_client.clear()
        await asyncio.sleep(backoff)
        backoff = min(backoff * 2.0, 60.0)


async def heartbeat() -> None:
    while True:
        try:
            logging.info(
                "[bot] ready=%s latency_ms=%s guilds=%s",
                is_bot_online(),
                latency_ms(),
                len(bot_client.guilds) if is_bot_online() else 0,
            )
        except asyncio.CancelledError:
            break
        await asyncio.sleep(60)


def start_bot() -> bool:
    if not current_token():
        logging.warning("No Discord bot token configured; gateway client not started.")
        return False
    if not state._bot_task or state._bot_task.done():
        state._bot_task = asyncio.create_task(run_bot_forever())
    if not state._bot_heartbeat_task or state._bot_heartbeat_task.done():
        state._bot_heartbeat_task = asyncio.create_task(heartbeat())
    return True


async def stop_bot() -> None:
    if bot_client and not bot_client.is_closed():
        await bot_client.close()
    for task in (state._bot_task, state._bot_heartbeat_task):
        if task and not task.done():
            task.cancel()
    state._bot_task = None
    state._bot_heartbeat_task = None


async def restart_bot(token: Optional[str] = None) -> bool:
    if token:
        state._bot_token = token
    await stop_bot()
    if bot_client:
        bot_client.clear()
    return start_bot()


intents = discord.Intents.default()
intents.guilds = True

bot_client = discord.Client(intents=intents)


@bot_client.event
async def on_ready():
    logging.info("Bot connected as %s (%s)", bot_client.user, getattr(bot_client.user, "id", "unknown"))
    try:
        await bot_client.change_presence(
            status=discord.Status.online,
            activity=discord.Activity(type=discord.ActivityType.watching, name="Roblox servers | /linkkey"),
        )
    except discord.HTTPException as exc:
        logging.debug("Failed to set presence: %s", exc)
    await broadcast("bot_status", {"online": True})


@bot_client.event
async def on_disconnect():
    logging.warning("Discord bot disconnected from gateway.")


@bot_client.event
async def on_resumed():
    logging.info("Discord bot resumed gateway session.")


@bot_client.event
async def on_guild_join(guild):
    if BOT_EVENT_LOGGING:
        logging.info("Bot added to guild %s (%s)", guild.name, guild.id)
    await broadcast("bot_guild_joined", {"guild_id": str(guild.id), "name": guild.name})


@bot_client.event
async def on_guild_remove(guild):
    if BOT_EVENT_LOGGING:
        logging.info("Bot removed from guild %s (%s)", guild.name, guild.id)
    await broadcast("bot_guild_removed", {"guild_id": str(guild.id)})
