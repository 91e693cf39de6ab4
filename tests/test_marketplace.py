import pytest

from conftest import login, make_user


@pytest.fixture
def seller():
    return login(make_user("500", "seller"))


@pytest.fixture
def buyer():
    return login(make_user("600", "buyer"))


def _listing(seller, **extra):
    resp = seller.post("/api/marketplace/listings", json={"title": "Golden Sword", "description": "Rare UGC", "price": 250, **extra})
    assert resp.status_code == 201
    return resp.json()


def test_listing_browse_and_seller_only_edits(client, seller, buyer):
    listing = _listing(seller)
    _listing(seller, title="Hat", category="accessory")

    assert len(client.get("/api/marketplace/listings").json()) == 2
    assert [l["title"] for l in client.get("/api/marketplace/listings", params={"search": "sword"}).json()] == ["Golden Sword"]
    assert [l["title"] for l in client.get("/api/marketplace/listings", params={"category": "accessory"}).json()] == ["Hat"]

    detail = client.get(f"/api/marketplace/listings/{listing['id']}").json()
    assert detail["seller"]["username"] == "seller"
    assert detail["views"] == 1

    assert buyer.patch(f"/api/marketplace/listings/{listing['id']}", json={"price": 1}).status_code == 403
    assert seller.patch(f"/api/marketplace/listings/{listing['id']}", json={"price": 300}).json()["price"] == 300
    assert buyer.delete(f"/api/marketplace/listings/{listing['id']}").status_code == 403
    assert seller.delete(f"/api/marketplace/listings/{listing['id']}").status_code == 204
    assert client.get(f"/api/marketplace/listings/{listing['id']}").status_code == 404


def test_offers(seller, buyer):
    listing = _listing(seller)
    assert seller.post("/api/marketplace/offers", json={"listing_id": listing["id"], "amount": 100}).status_code == 400
    assert buyer.post("/api/marketplace/offers", json={"listing_id": "missing", "amount": 100}).status_code == 404

    offer = buyer.post("/api/marketplace/offers", json={"listing_id": listing["id"], "amount": 200, "message": "deal?"}).json()
    assert offer["status"] == "pending"
    assert buyer.get(f"/api/marketplace/listings/{listing['id']}/offers").status_code == 403
    assert seller.get(f"/api/marketplace/listings/{listing['id']}/offers").json()[0]["id"] == offer["id"]

    assert buyer.patch(f"/api/marketplace/offers/{offer['id']}", json={"status": "accepted"}).status_code == 403
    accepted = seller.patch(f"/api/marketplace/offers/{offer['id']}", json={"status": "accepted"}).json()
    assert accepted["status"] == "accepted"


def test_escrow_release_completes_transaction(seller, buyer):
    listing = _listing(seller)
    created = buyer.post("/api/marketplace/transactions", json={"listing_id": listing["id"]})
    assert created.status_code == 201
    transaction = created.json()
    assert transaction["amount"] == 250
    assert transaction["seller_id"] != transaction["buyer_id"]
    assert transaction["escrow"]["status"] == "held"

    outsider = login(make_user("700", "outsider"))
    assert outsider.get(f"/api/marketplace/transactions/{transaction['id']}").status_code == 403

    tid = transaction["id"]
    assert seller.patch(f"/api/marketplace/transactions/{tid}/escrow", json={"buyer_confirmed": True}).status_code == 403
    seller.patch(f"/api/marketplace/transactions/{tid}/escrow", json={"seller_confirmed": True, "id": "hijack"})
    released = buyer.patch(f"/api/marketplace/transactions/{tid}/escrow", json={"buyer_confirmed": True}).json()
    assert released["status"] == "released"
    assert released["released_at"]
    assert released["seller_confirmed"] is True
    assert released["id"] == transaction["escrow"]["id"]

    assert seller.get(f"/api/marketplace/transactions/{tid}").json()["status"] == "completed"
    actions = [entry["action"] for entry in buyer.get(f"/api/marketplace/transactions/{tid}/logs").json()]
    assert actions == ["created", "escrow_updated", "escrow_updated", "completed"]

    seller_id = transaction["seller_id"]
    assert buyer.get(f"/api/marketplace/users/{seller_id}/reputation").json()["total_sales"] == 1


def test_transaction_from_offer_uses_offer_amount(seller, buyer):
    listing = _listing(seller)
    offer = buyer.post("/api/marketplace/offers", json={"listing_id": listing["id"], "amount": 180}).json()
    pending = buyer.post("/api/marketplace/transactions", json={"listing_id": listing["id"], "offer_id": offer["id"]})
    assert pending.status_code == 400

    seller.patch(f"/api/marketplace/offers/{offer['id']}", json={"status": "accepted"})
    transaction = buyer.post("/api/marketplace/transactions", json={"listing_id": listing["id"], "offer_id": offer["id"]}).json()
    assert transaction["amount"] == 180
    assert seller.post("/api/marketplace/transactions", json={"listing_id": listing["id"]}).status_code == 400


def test_reviews_recompute_reputation(seller, buyer):
    seller_id = seller.get("/api/auth/me").json()["id"]
    buyer_id = buyer.get("/api/auth/me").json()["id"]
    assert seller.post("/api/marketplace/reviews", json={"reviewed_user_id": seller_id, "rating": 5}).status_code == 400
    assert buyer.post("/api/marketplace/reviews", json={"reviewed_user_id": seller_id, "rating": 6}).status_code == 422

    buyer.post("/api/marketplace/reviews", json={"reviewed_user_id": seller_id, "rating": 5})
    other = login(make_user("800", "another_buyer"))
    other.post("/api/marketplace/reviews", json={"reviewed_user_id": seller_id, "rating": 2, "comment": "slow"})

    reputation = buyer.get(f"/api/marketplace/users/{seller_id}/reputation").json()
    assert reputation["average_rating"] == 3.5
    assert reputation["total_reviews"] == 2
    assert len(buyer.get(f"/api/marketplace/users/{seller_id}/reviews").json()) == 2
    assert buyer_id != seller_id


def test_verification_is_self_service(buyer):
    assert buyer.get("/api/marketplace/verification").json()["status"] == "unverified"
    updated = buyer.patch("/api/marketplace/verification", json={"roblox_user_id": "321", "status": "pending"}).json()
    assert updated["roblox_user_id"] == "321"
    assert updated["status"] == "pending"


def _open_transaction(seller, buyer):
    listing = _listing(seller)
    transaction = buyer.post("/api/marketplace/transactions", json={"listing_id": listing["id"]}).json()
    return listing, transaction


def test_seller_cannot_release_escrow_without_buyer_confirmation(seller, buyer):
    _, transaction = _open_transaction(seller, buyer)
    tid = transaction["id"]

    forced = seller.patch(f"/api/marketplace/transactions/{tid}/escrow", json={"status": "released"})
    assert forced.status_code == 403
    also_forced = buyer.patch(f"/api/marketplace/transactions/{tid}/escrow", json={"status": "released"})
    assert also_forced.status_code == 403

    escrow = buyer.get(f"/api/marketplace/transactions/{tid}/escrow").json()
    assert escrow["status"] == "held"
    assert escrow["buyer_confirmed"] is False
    assert seller.get(f"/api/marketplace/transactions/{tid}").json()["status"] == "pending"
    assert buyer.get(f"/api/marketplace/users/{transaction['seller_id']}/reputation").json()["total_sales"] == 0

    disputed = seller.patch(f"/api/marketplace/transactions/{tid}/escrow", json={"status": "disputed"})
    assert disputed.status_code == 200
    assert disputed.json()["status"] == "disputed"


def test_released_escrow_is_final_and_counts_one_sale(seller, buyer):
    _, transaction = _open_transaction(seller, buyer)
    tid = transaction["id"]
    assert buyer.patch(f"/api/marketplace/transactions/{tid}/escrow", json={"buyer_confirmed": True}).json()["status"] == "released"

    assert seller.patch(f"/api/marketplace/transactions/{tid}/escrow", json={"status": "held"}).status_code == 409
    assert buyer.patch(f"/api/marketplace/transactions/{tid}/escrow", json={"buyer_confirmed": False}).status_code == 409
    assert buyer.patch(f"/api/marketplace/transactions/{tid}/escrow", json={"buyer_confirmed": True}).status_code == 409

    assert buyer.get(f"/api/marketplace/transactions/{tid}/escrow").json()["status"] == "released"
    assert buyer.get(f"/api/marketplace/users/{transaction['seller_id']}/reputation").json()["total_sales"] == 1


def test_transaction_status_cannot_be_forced_to_completed(seller, buyer):
    _, transaction = _open_transaction(seller, buyer)
    tid = transaction["id"]

    assert seller.patch(f"/api/marketplace/transactions/{tid}", json={"status": "completed"}).status_code == 422
    assert seller.get(f"/api/marketplace/transactions/{tid}").json()["status"] == "pending"

    noted = buyer.patch(f"/api/marketplace/transactions/{tid}", json={"status": "in_progress", "notes": "sent trade"})
    assert noted.json()["status"] == "in_progress"

    buyer.patch(f"/api/marketplace/transactions/{tid}/escrow", json={"buyer_confirmed": True})
    assert seller.patch(f"/api/marketplace/transactions/{tid}", json={"status": "cancelled"}).status_code == 409
    assert seller.patch(f"/api/marketplace/transactions/{tid}", json={"notes": "thanks"}).status_code == 200


def test_buyer_cannot_choose_the_price(seller, buyer):
    listing = _listing(seller)
    transaction = buyer.post(
        "/api/marketplace/transactions",
        json={"listing_id": listing["id"], "amount": 1, "currency": "tix"},
    ).json()
    assert transaction["amount"] == 250
    assert transaction["currency"] == "robux"
    assert transaction["escrow"]["amount"] == 250


def test_inactive_listing_cannot_be_bought(seller, buyer):
    listing = _listing(seller)
    seller.patch(f"/api/marketplace/listings/{listing['id']}", json={"status": "sold"})
    resp = buyer.post("/api/marketplace/transactions", json={"listing_id": listing["id"]})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Listing is not available"
