"""Table access shared by every repository module.

Rows are plain dicts keyed by column name. When Supabase is configured every
call is forwarded to PostgREST; otherwise rows live in ``state._tables`` for
the lifetime of the process.
"""
from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional

from .. import state
from ..utils import new_id, now_iso
from .supabase import eq_filter, is_supabase_ready, supabase_request


class StorageError(RuntimeError):
    """Raised when the remote store rejects or cannot serve a request."""


def _remote_params(filters: Optional[Dict[str, Any]]) -> Dict[str, str]:
    return {column: eq_filter(value) for column, value in (filters or {}).items()}


def _matches(row: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
    for column, value in (filters or {}).items():
        if isinstance(value, (list, tuple, set)):
            if row.get(column) not in value:
                return False
        elif row.get(column) != value:
            return False
    return True


def _sort_key(column: str):
    def key(row: Dict[str, Any]):
        value = row.get(column)
        return (value is not None, value if value is not None else "")
    return key


async def insert(table: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    row = dict(payload)
    row.setdefault("id", new_id())
    row.setdefault("created_at", now_iso())
    row.setdefault("updated_at", row["created_at"])
    if is_supabase_ready():
        result = await supabase_request("post", table, payload=row)
        if not isinstance(result, list) or not result:
            raise StorageError(f"insert into {table} failed")
        return result[0]
    state._tables[table][row["id"]] = copy.deepcopy(row)
    return row


async def select(
    table: str,
    filters: Optional[Dict[str, Any]] = None,
    *,
    order: Optional[str] = "created_at",
    desc: bool = True,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    if is_supabase_ready():
        params = _remote_params(filters)
        if order:
            params["order"] = f"{order}.{'desc' if desc else 'asc'}"
        if limit:
            params["limit"] = str(limit)
        result = await supabase_request("get", table, params=params)
        if result is None:
            raise StorageError(f"select from {table} failed")
        return list(result) if isinstance(result, list) else []

    rows = [copy.deepcopy(row) for row in state._tables[table].values() if _matches(row, filters)]
    if order:
        rows.sort(key=_sort_key(order), reverse=desc)
    if limit:
        rows = rows[:limit]
    return rows


async def select_one(table: str, **filters: Any) -> Optional[Dict[str, Any]]:
    rows = await select(table, filters, order=None, limit=1)
    return rows[0] if rows else None


async def get(table: str, row_id: Optional[str]) -> Optional[Dict[str, Any]]:
    if not row_id:
        return None
    return await select_one(table, id=str(row_id))


async def update_where(table: str, filters: Dict[str, Any], changes: Dict[str, Any]) -> List[Dict[str, Any]]:
    changes = dict(changes)
    changes["updated_at"] = now_iso()
    if is_supabase_ready():
        result = await supabase_request("patch", table, params=_remote_params(filters), payload=changes)
        if result is None:
            raise StorageError(f"update of {table} failed")
        return list(result) if isinstance(result, list) else []

    updated = []
    for row in state._tables[table].values():
        if _matches(row, filters):
            row.update(copy.deepcopy(changes))
            updated.append(copy.deepcopy(row))
    return updated


async def update(table: str, row_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    rows = await update_where(table, {"id": str(row_id)}, changes)
    return rows[0] if rows else None


async def delete_where(table: str, filters: Dict[str, Any]) -> int:
    if is_supabase_ready():
        result = await supabase_request("delete", table, params=_remote_params(filters))
        if result is None:
            raise StorageError(f"delete from {table} failed")
        return len(result) if isinstance(result, list) else 0

    doomed = [row_id for row_id, row in state._tables[table].items() if _matches(row, filters)]
    for row_id in doomed:
        state._tables[table].pop(row_id, None)
    return len(doomed)


async def delete(table: str, row_id: str) -> bool:
    return await delete_where(table, {"id": str(row_id)}) > 0


async def count(table: str, filters: Optional[Dict[str, Any]] = None) -> int:
    rows = await select(table, filters, order=None)
    return len(rows)
