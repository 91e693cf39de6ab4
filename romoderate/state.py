from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any, Dict, List, Optional, Tuple

# simple in-memory stores
_sessions: Dict[str, Tuple[str, float]] = {}  # {session_token: (user_id, expires_at)}
_admin_sessions: Dict[str, Tuple[str, float]] = {}  # {session_token: (admin_id, expires_at)}
_oauth_states: Dict[str, float] = {}  # {nonce: expires_at}
_ip_requests: Dict[str, List[float]] = {}  # {ip: [timestamps]}

# In-memory tables used when no remote store is configured: {table: {row_id: row}}
_tables: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)

# Bot
_bot_task: Optional[asyncio.Task] = None
_bot_heartbeat_task: Optional[asyncio.Task] = None
_bot_token: Optional[str] = None


def reset() -> None:
    _sessions.clear()
    _admin_sessions.clear()
    _oauth_states.clear()
    _ip_requests.clear()
    _tables.clear()
