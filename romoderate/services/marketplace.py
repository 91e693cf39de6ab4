from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..utils import now_iso
from . import accounts
from . import database as db

logger = logging.getLogger(__name__)

LISTINGS = "marketplace_listings"
OFFERS = "marketplace_offers"
TRANSACTIONS = "marketplace_transactions"
ESCROW = "marketplace_escrow"
TRANSACTION_LOGS = "transaction_logs"
REVIEWS = "marketplace_reviews"
REPUTATION = "user_reputation"
VERIFICATION = "user_verification"


def is_party(transaction: Dict[str, Any], user_id: str) -> bool:
    return user_id in (transaction.get("buyer_id"), transaction.get("seller_id"))


# --- Listings ---

async def list_listings(
    *,
    status: Optional[str] = "active",
    category: Optional[str] = None,
    server_id: Optional[str] = None,
    seller_id: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 50,
) -> List[dict]:
    filters: Dict[str, Any] = {}
    if status:
        filters["status"] = status
    if category:
        filters["category"] = category
    if server_id:
        filters["server_id"] = server_id
    if seller_id:
        filters["seller_id"] = seller_id
    rows = await db.select(LISTINGS, filters)
    needle = (search or "").strip().lower()
    if needle:
        rows = [r for r in rows if needle in f"{r.get('title', '')} {r.get('description', '')}".lower()]
    return rows[:limit]


async def get_listing(listing_id: str) -> Optional[dict]:
    return await db.get(LISTINGS, listing_id)


async def with_seller(listing: Dict[str, Any]) -> Dict[str, Any]:
    seller = await accounts.get_user(listing.get("seller_id"))
    view = dict(listing)
    view["seller"] = None
    if seller:
        view["seller"] = {
            "id": seller["id"],
            "username": seller.get("username"),
            "avatar": seller.get("avatar"),
            "discord_id": seller.get("discord_id"),
            "reputation": await get_reputation(seller["id"]),
        }
    return view


async def create_listing(seller_id: str, fields: Dict[str, Any]) -> dict:
    return await db.insert(LISTINGS, {**fields, "seller_id": seller_id, "status": fields.get("status") or "active", "views": 0})


async def update_listing(listing_id: str, changes: Dict[str, Any]) -> Optional[dict]:
    return await db.update(LISTINGS, listing_id, changes)


async def delete_listing(listing_id: str) -> bool:
    return await db.delete(LISTINGS, listing_id)


# --- Offers ---

async def list_offers(listing_id: str) -> List[dict]:
    return await db.select(OFFERS, {"listing_id": listing_id})


async def get_offer(offer_id: str) -> Optional[dict]:
    return await db.get(OFFERS, offer_id)


async def create_offer(listing: Dict[str, Any], buyer_id: str, amount: float, message: Optional[str]) -> dict:
    return await db.insert(
        OFFERS,
        {
            "listing_id": listing["id"],
            "seller_id": listing["seller_id"],
            "buyer_id": buyer_id,
            "amount": amount,
            "currency": listing.get("currency") or "robux",
            "message": message,
            "status": "pending",
        },
    )


async def update_offer(offer_id: str, changes: Dict[str, Any]) -> Optional[dict]:
    return await db.update(OFFERS, offer_id, changes)


# --- Transactions & escrow ---

async def log_transaction(transaction_id: str, actor_id: Optional[str], action: str, details: Optional[Dict[str, Any]] = None) -> dict:
    return await db.insert(
        TRANSACTION_LOGS,
        {"transaction_id": transaction_id, "actor_id": actor_id, "action": action, "details": details or {}},
    )


async def list_transaction_logs(transaction_id: str) -> List[dict]:
    return await db.select(TRANSACTION_LOGS, {"transaction_id": transaction_id}, desc=False)


async def list_user_transactions(user_id: str) -> List[dict]:
    rows = await db.select(TRANSACTIONS, {"buyer_id": user_id}) + await db.select(TRANSACTIONS, {"seller_id": user_id})
    unique = {row["id"]: row for row in rows}
    return sorted(unique.values(), key=lambda r: r.get("created_at") or "", reverse=True)


async def get_transaction(transaction_id: str) -> Optional[dict]:
    return await db.get(TRANSACTIONS, transaction_id)


async def create_transaction(
    listing: Dict[str, Any],
    buyer_id: str,
    *,
    amount: float,
    currency: str,
    offer_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Open a transaction and its escrow row together."""
    transaction = await db.insert(
        TRANSACTIONS,
        {
            "listing_id": listing["id"],
            "offer_id": offer_id,
            "buyer_id": buyer_id,
            "seller_id": listing["seller_id"],
            "amount": amount,
            "currency": currency,
            "status": "pending",
        },
    )
    escrow = await db.insert(
        ESCROW,
        {
            "transaction_id": transaction["id"],
            "amount": amount,
            "currency": currency,
            "status": "held",
            "buyer_confirmed": False,
            "seller_confirmed": False,
            "released_at": None,
        },
    )
    await log_transaction(transaction["id"], buyer_id, "created", {"amount": amount, "currency": currency})
    logger.info("Transaction %s opened for listing %s", transaction["id"], listing["id"])
    return {**transaction, "escrow": escrow}


async def update_transaction(transaction_id: str, changes: Dict[str, Any]) -> Optional[dict]:
    return await db.update(TRANSACTIONS, transaction_id, changes)


async def get_escrow(transaction_id: str) -> Optional[dict]:
    return await db.select_one(ESCROW, transaction_id=transaction_id)


async def update_escrow(
    transaction: Dict[str, Any],
    escrow: Dict[str, Any],
    changes: Dict[str, Any],
    actor_id: str,
) -> Optional[dict]:
    """Apply a party's escrow changes.

    Callers have already checked who may touch which flag; here the buyer's
    confirmation is the only path to ``released``.
    """
    changes = dict(changes)
    releasing = changes.get("buyer_confirmed") is True and escrow.get("status") != "released"
    if releasing:
        changes["status"] = "released"
        changes["released_at"] = now_iso()
    elif changes.get("status") == "released":
        changes.pop("status")
    updated = await db.update(ESCROW, escrow["id"], changes)
    await log_transaction(transaction["id"], actor_id, "escrow_updated", changes)
    if releasing:
        await complete_transaction(transaction["id"], actor_id)
    return updated


async def complete_transaction(transaction_id: str, actor_id: str) -> Optional[dict]:
    current = await db.get(TRANSACTIONS, transaction_id)
    if not current or current.get("status") == "completed":
        return current
    completed = await db.update(TRANSACTIONS, transaction_id, {"status": "completed", "completed_at": now_iso()})
    reputation = await get_reputation(current["seller_id"])
    await db.update(REPUTATION, reputation["id"], {"total_sales": int(reputation.get("total_sales") or 0) + 1})
    await log_transaction(transaction_id, actor_id, "completed")
    logger.info("Transaction %s completed", transaction_id)
    return completed


# --- Reviews & reputation ---

async def get_reputation(user_id: str) -> dict:
    existing = await db.select_one(REPUTATION, user_id=user_id)
    if existing:
        return existing
    return await db.insert(REPUTATION, {"user_id": user_id, "average_rating": 0.0, "total_reviews": 0, "total_sales": 0})


async def list_reviews(user_id: str) -> List[dict]:
    return await db.select(REVIEWS, {"reviewed_user_id": user_id})


async def create_review(reviewer_id: str, reviewed_user_id: str, rating: int, comment: Optional[str], transaction_id: Optional[str]) -> dict:
    review = await db.insert(
        REVIEWS,
        {
            "reviewer_id": reviewer_id,
            "reviewed_user_id": reviewed_user_id,
            "transaction_id": transaction_id,
            "rating": rating,
            "comment": comment,
        },
    )
    reviews = await list_reviews(reviewed_user_id)
    average = round(sum(int(r.get("rating") or 0) for r in reviews) / len(reviews), 2) if reviews else 0.0
    reputation = await get_reputation(reviewed_user_id)
    await db.update(REPUTATION, reputation["id"], {"average_rating": average, "total_reviews": len(reviews)})
    return review


# --- Verification ---

async def get_verification(user_id: str) -> dict:
    existing = await db.select_one(VERIFICATION, user_id=user_id)
    if existing:
        return existing
    return await db.insert(VERIFICATION, {"user_id": user_id, "status": "unverified", "roblox_user_id": None, "verified_at": None})


async def update_verification(user_id: str, changes: Dict[str, Any]) -> Optional[dict]:
    current = await get_verification(user_id)
    return await db.update(VERIFICATION, current["id"], changes)
