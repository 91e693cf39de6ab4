import os
import secrets

from dotenv import load_dotenv

# Load .env if present (hosted deployments still use real env vars)
load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}


# --- Configuration ---
DISCORD_CLIENT_ID = os.getenv("DISCORD_CLIENT_ID")
DISCORD_CLIENT_SECRET = os.getenv("DISCORD_CLIENT_SECRET")
DISCORD_REDIRECT_URI = os.getenv("DISCORD_REDIRECT_URI")  # e.g. https://romoderate.app/api/auth/discord/callback
DISCORD_BOT_TOKEN = os.getenv("DISCORD_TOKEN") or os.getenv("DISCORD_BOT_TOKEN")
DISCORD_PUBLIC_KEY = os.getenv("DISCORD_PUBLIC_KEY")  # Required for interaction verification
DISCORD_CHANGELOG_WEBHOOK = os.getenv("DISCORD_CHANGELOG_WEBHOOK")
SECRET_KEY = os.getenv("PORTAL_SECRET_KEY") or secrets.token_hex(16)
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")

BLOXLINK_API_KEY = os.getenv("BLOXLINK_API_KEY")
APPEAL_WEBHOOK_URL = os.getenv("APPEAL_WEBHOOK_URL")
WEBHOOK_TIMEOUT_SECONDS = float(os.getenv("WEBHOOK_TIMEOUT_SECONDS", "5"))
WEBHOOK_RETRY_DELAY_SECONDS = float(os.getenv("WEBHOOK_RETRY_DELAY_SECONDS", "1"))

ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "admin")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")

PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

OAUTH_SCOPES = "identify guilds"
BOT_INVITE_PERMISSIONS = os.getenv("BOT_INVITE_PERMISSIONS", "8")
DISCORD_API_BASE = "https://discord.com/api/v10"
DISCORD_CDN_BASE = "https://cdn.discordapp.com"
ROBLOX_API_BASE = "https://apis.roblox.com"
ROBLOX_USERS_API = "https://users.roblox.com"
ROBLOX_THUMBNAILS_API = "https://thumbnails.roblox.com"
BLOXLINK_API_BASE = "https://api.blox.link/v4/public"

# Sessions
SESSION_COOKIE_NAME = "session"
ADMIN_SESSION_COOKIE_NAME = "admin_session"
SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", str(7 * 24 * 3600)))  # keep users signed in for a week
ADMIN_SESSION_TTL_SECONDS = int(os.getenv("ADMIN_SESSION_TTL_SECONDS", str(24 * 3600)))
OAUTH_STATE_TTL_SECONDS = int(os.getenv("OAUTH_STATE_TTL_SECONDS", "600"))
SESSION_COOKIE_SECURE = _flag("SESSION_COOKIE_SECURE", "true")

# Keys
LINK_KEY_TTL_SECONDS = 7 * 24 * 3600
REGENERATED_LINK_KEY_TTL_SECONDS = 24 * 3600

# Rate limiting for unauthenticated endpoints
PUBLIC_IP_MAX_REQUESTS = int(os.getenv("PUBLIC_IP_MAX_REQUESTS", "60"))
PUBLIC_IP_WINDOW_SECONDS = int(os.getenv("PUBLIC_IP_WINDOW_SECONDS", "60"))

BOT_EVENT_LOGGING = _flag("BOT_EVENT_LOGGING", "true")


def validate_required_envs() -> None:
    missing = [
        name
        for name, val in {
            "DISCORD_CLIENT_ID": DISCORD_CLIENT_ID,
            "DISCORD_CLIENT_SECRET": DISCORD_CLIENT_SECRET,
            "DISCORD_REDIRECT_URI": DISCORD_REDIRECT_URI,
        }.items()
        if not val
    ]
    if missing:
        raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")
