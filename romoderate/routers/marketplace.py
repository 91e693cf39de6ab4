from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from fastapi.responses import Response

from ..models import (
    ListingCreate,
    ListingUpdate,
    OfferCreate,
    OfferUpdate,
    ReviewCreate,
    TransactionCreate,
    TransactionUpdate,
    VerificationUpdate,
)
from ..services import marketplace
from ..services.realtime import broadcast
from ..services.sessions import require_user

router = APIRouter(prefix="/api/marketplace")

PROTECTED_ESCROW_KEYS = ("id", "transaction_id", "created_at")
SELLER_OFFER_STATUSES = ("accepted", "rejected")


async def _listing(listing_id: str) -> dict:
    listing = await marketplace.get_listing(listing_id)
    if not listing:
        raise HTTPException(status_code=404, detail="Listing not found")
    return listing


async def _own_listing(listing_id: str, user: dict) -> dict:
    listing = await _listing(listing_id)
    if listing.get("seller_id") != user["id"]:
        raise HTTPException(status_code=403, detail="Not authorized")
    return listing


async def _party_transaction(transaction_id: str, user: dict) -> dict:
    transaction = await marketplace.get_transaction(transaction_id)
    if not transaction:
        raise HTTPException(status_code=404, detail="Transaction not found")
    if not marketplace.is_party(transaction, user["id"]):
        raise HTTPException(status_code=403, detail="Not authorized")
    return transaction


# --- Listings ---

@router.get("/listings")
async def list_listings(
    category: Optional[str] = None,
    server_id: Optional[str] = None,
    seller_id: Optional[str] = None,
    search: Optional[str] = None,
    status: str = "active",
):
    return await marketplace.list_listings(
        status=status, category=category, server_id=server_id, seller_id=seller_id, search=search
    )


@router.get("/listings/{listing_id}")
async def get_listing(listing_id: str):
    listing = await _listing(listing_id)
    listing = await marketplace.update_listing(listing_id, {"views": int(listing.get("views") or 0) + 1}) or listing
    return await marketplace.with_seller(listing)


@router.post("/listings", status_code=201)
async def create_listing(body: ListingCreate, user: dict = Depends(require_user)):
    listing = await marketplace.create_listing(user["id"], body.model_dump())
    await broadcast("listing_created", {"listing": listing})
    return listing


@router.patch("/listings/{listing_id}")
async def update_listing(listing_id: str, body: ListingUpdate, user: dict = Depends(require_user)):
    await _own_listing(listing_id, user)
    return await marketplace.update_listing(listing_id, body.model_dump(exclude_none=True))


@router.delete("/listings/{listing_id}", status_code=204)
async def delete_listing(listing_id: str, user: dict = Depends(require_user)):
    await _own_listing(listing_id, user)
    await marketplace.delete_listing(listing_id)
    return Response(status_code=204)


# --- Offers ---

@router.get("/listings/{listing_id}/offers")
async def listing_offers(listing_id: str, user: dict = Depends(require_user)):
    await _own_listing(listing_id, user)
    return await marketplace.list_offers(listing_id)


@router.post("/offers", status_code=201)
async def create_offer(body: OfferCreate, user: dict = Depends(require_user)):
    listing = await _listing(body.listing_id)
    if listing.get("seller_id") == user["id"]:
        raise HTTPException(status_code=400, detail="You cannot make an offer on your own listing")
    if listing.get("status") != "active":
        raise HTTPException(status_code=400, detail="Listing is not available")
    offer = await marketplace.create_offer(listing, user["id"], body.amount, body.message)
    await broadcast("offer_created", {"offer": offer})
    return offer


@router.patch("/offers/{offer_id}")
async def update_offer(offer_id: str, body: OfferUpdate, user: dict = Depends(require_user)):
    offer = await marketplace.get_offer(offer_id)
    if not offer:
        raise HTTPException(status_code=404, detail="Offer not found")
    if user["id"] not in (offer.get("seller_id"), offer.get("buyer_id")):
        raise HTTPException(status_code=403, detail="Not authorized")
    if body.status in SELLER_OFFER_STATUSES and user["id"] != offer.get("seller_id"):
        raise HTTPException(status_code=403, detail="Only the seller can accept or reject offers")
    if body.status == "withdrawn" and user["id"] != offer.get("buyer_id"):
        raise HTTPException(status_code=403, detail="Only the buyer can withdraw an offer")
    updated = await marketplace.update_offer(offer_id, {"status": body.status})
    await broadcast("offer_updated", {"offer": updated})
    return updated


# --- Transactions ---

@router.get("/transactions")
async def my_transactions(user: dict = Depends(require_user)):
    return await marketplace.list_user_transactions(user["id"])


@router.post("/transactions", status_code=201)
async def create_transaction(body: TransactionCreate, user: dict = Depends(require_user)):
    listing = await _listing(body.listing_id)
    if listing.get("seller_id") == user["id"]:
        raise HTTPException(status_code=400, detail="You cannot buy your own listing")
    if listing.get("status") != "active":
        raise HTTPException(status_code=400, detail="Listing is not available")
    amount = listing.get("price")
    if body.offer_id:
        offer = await marketplace.get_offer(body.offer_id)
        if not offer or offer.get("listing_id") != listing["id"] or offer.get("buyer_id") != user["id"]:
            raise HTTPException(status_code=404, detail="Offer not found")
        if offer.get("status") != "accepted":
            raise HTTPException(status_code=400, detail="Offer has not been accepted")
        amount = offer["amount"]
    transaction = await marketplace.create_transaction(
        listing,
        user["id"],
        amount=amount,
        currency=listing.get("currency") or "robux",
        offer_id=body.offer_id,
    )
    await broadcast("transaction_created", {"transaction_id": transaction["id"], "listing_id": listing["id"]})
    return transaction


@router.get("/transactions/{transaction_id}")
async def get_transaction(transaction_id: str, user: dict = Depends(require_user)):
    transaction = await _party_transaction(transaction_id, user)
    return {**transaction, "escrow": await marketplace.get_escrow(transaction_id)}


@router.patch("/transactions/{transaction_id}")
async def update_transaction(transaction_id: str, body: TransactionUpdate, user: dict = Depends(require_user)):
    transaction = await _party_transaction(transaction_id, user)
    changes = body.model_dump(exclude_none=True)
    if "status" in changes and transaction.get("status") == "completed":
        raise HTTPException(status_code=409, detail="Transaction is already completed")
    updated = await marketplace.update_transaction(transaction_id, changes)
    await marketplace.log_transaction(transaction_id, user["id"], "updated", changes)
    return updated


@router.get("/transactions/{transaction_id}/escrow")
async def get_escrow(transaction_id: str, user: dict = Depends(require_user)):
    await _party_transaction(transaction_id, user)
    escrow = await marketplace.get_escrow(transaction_id)
    if not escrow:
        raise HTTPException(status_code=404, detail="Escrow not found")
    return escrow


@router.patch("/transactions/{transaction_id}/escrow")
async def update_escrow(transaction_id: str, body: Dict[str, Any] = Body(...), user: dict = Depends(require_user)):
    transaction = await _party_transaction(transaction_id, user)
    escrow = await marketplace.get_escrow(transaction_id)
    if not escrow:
        raise HTTPException(status_code=404, detail="Escrow not found")
    changes = {k: v for k, v in body.items() if k not in PROTECTED_ESCROW_KEYS}
    if "buyer_confirmed" in changes and user["id"] != transaction.get("buyer_id"):
        raise HTTPException(status_code=403, detail="Only the buyer can confirm receipt")
    if "seller_confirmed" in changes and user["id"] != transaction.get("seller_id"):
        raise HTTPException(status_code=403, detail="Only the seller can confirm delivery")
    if escrow.get("status") == "released":
        if "buyer_confirmed" in changes or changes.get("status", "released") != "released":
            raise HTTPException(status_code=409, detail="Escrow has already been released")
    elif changes.get("status") == "released" and changes.get("buyer_confirmed") is not True:
        raise HTTPException(status_code=403, detail="Escrow is released only by buyer confirmation")
    updated = await marketplace.update_escrow(transaction, escrow, changes, user["id"])
    logging.info("Escrow for transaction %s updated by %s: %s", transaction_id, user["id"], sorted(changes))
    await broadcast("escrow_updated", {"transaction_id": transaction_id, "status": (updated or {}).get("status")})
    return updated


@router.get("/transactions/{transaction_id}/logs")
async def transaction_logs(transaction_id: str, user: dict = Depends(require_user)):
    await _party_transaction(transaction_id, user)
    return await marketplace.list_transaction_logs(transaction_id)


# --- Reviews & reputation ---

@router.post("/reviews", status_code=201)
async def create_review(body: ReviewCreate, user: dict = Depends(require_user)):
    if body.reviewed_user_id == user["id"]:
        raise HTTPException(status_code=400, detail="You cannot review yourself")
    if body.transaction_id:
        transaction = await _party_transaction(body.transaction_id, user)
        if not marketplace.is_party(transaction, body.reviewed_user_id):
            raise HTTPException(status_code=400, detail="Reviewed user is not part of this transaction")
    return await marketplace.create_review(user["id"], body.reviewed_user_id, body.rating, body.comment, body.transaction_id)


@router.get("/users/{user_id}/reputation")
async def user_reputation(user_id: str):
    return await marketplace.get_reputation(user_id)


@router.get("/users/{user_id}/reviews")
async def user_reviews(user_id: str):
    return await marketplace.list_reviews(user_id)


# --- Verification ---

@router.get("/verification")
async def my_verification(user: dict = Depends(require_user)):
    return await marketplace.get_verification(user["id"])


@router.patch("/verification")
async def update_my_verification(body: VerificationUpdate, user: dict = Depends(require_user)):
    return await marketplace.update_verification(user["id"], body.model_dump(exclude_none=True))
