"""Tests for coupon evaluation and redemption."""

from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId

from conftest import ADMIN, USER, checkout_body, line
from coupons import claim_coupon, compute_discount, evaluate_coupon, release_user_claim
from errors import RuleViolation


def validate(client, code, subtotal, headers=USER):
    return client.get("/api/coupons/validate", params={"code": code, "subtotal": subtotal}, headers=headers)


class TestComputeDiscount:
    def test_percentage_capped_by_max_discount(self):
        coupon = {"type": "PERCENTAGE", "value": 10, "max_discount": 500}
        assert compute_discount(coupon, 8000) == 500

    def test_percentage_below_cap(self):
        coupon = {"type": "PERCENTAGE", "value": 10, "max_discount": 500}
        assert compute_discount(coupon, 3000) == 300

    @pytest.mark.parametrize("subtotal", [0, 1, 799.99, 1000, 25000])
    def test_percentage_never_exceeds_cap(self, subtotal):
        coupon = {"type": "PERCENTAGE", "value": 50, "max_discount": 750}
        assert compute_discount(coupon, subtotal) <= 750

    @pytest.mark.parametrize("subtotal", [0, 250, 800, 999.5, 1000, 40000])
    def test_fixed_amount_never_exceeds_subtotal(self, subtotal):
        coupon = {"type": "FIXED_AMOUNT", "value": 1000}
        assert compute_discount(coupon, subtotal) <= subtotal

    def test_free_shipping_has_no_item_discount(self):
        assert compute_discount({"type": "FREE_SHIPPING", "value": 1}, 5000) == 0


class TestValidateEndpoint:
    def test_save10_scenario(self, client, make_coupon):
        make_coupon("SAVE10", "PERCENTAGE", 10, max_discount=500, min_order_amount=1000)

        response = validate(client, "SAVE10", 8000)
        assert response.status_code == 200
        data = response.json()
        assert data["discount"] == 500
        assert "500" in data["message"]
        assert data["coupon"]["code"] == "SAVE10"

    def test_flat1000_scenario(self, client, make_coupon):
        make_coupon("FLAT1000", "FIXED_AMOUNT", 1000)

        response = validate(client, "FLAT1000", 800)
        assert response.status_code == 200
        assert response.json()["discount"] == 800

    def test_code_is_case_insensitive(self, client, make_coupon):
        make_coupon("FLAT1000", "FIXED_AMOUNT", 1000)
        response = validate(client, "  flat1000 ", 5000)
        assert response.status_code == 200
        assert response.json()["discount"] == 1000

    def test_free_shipping_message(self, client, make_coupon):
        make_coupon("SHIPFREE", "FREE_SHIPPING", 1)
        response = validate(client, "SHIPFREE", 5000)
        assert response.status_code == 200
        assert response.json() == {
            "coupon": response.json()["coupon"],
            "discount": 0,
            "message": "Free shipping applied!",
        }

    def test_missing_code(self, client):
        response = validate(client, "", 5000)
        assert response.status_code == 400
        assert response.json() == {"error": "Coupon code is required"}

    def test_unknown_code(self, client):
        response = validate(client, "nope", 5000)
        assert response.status_code == 400
        assert response.json()["error"] == 'Coupon code "NOPE" does not exist'

    def test_inactive_coupon_always_rejected(self, client, make_coupon):
        make_coupon("OFF", "FIXED_AMOUNT", 100, is_active=False)
        for subtotal in (0, 500, 100000):
            response = validate(client, "OFF", subtotal)
            assert response.status_code == 400
            assert response.json()["error"] == "This coupon is no longer active"

    def test_not_yet_active(self, client, make_coupon):
        make_coupon("SOON", "FIXED_AMOUNT", 100, starts_at=datetime.now(timezone.utc) + timedelta(days=2))
        response = validate(client, "SOON", 5000)
        assert response.json()["error"] == "This coupon is not yet active"

    def test_expired(self, client, make_coupon):
        make_coupon("OLD", "FIXED_AMOUNT", 100, expires_at=datetime.now(timezone.utc) - timedelta(days=1))
        response = validate(client, "OLD", 5000)
        assert response.json()["error"] == "This coupon has expired"

    def test_usage_limit_reached(self, client, make_coupon):
        make_coupon("LIMITED", "FIXED_AMOUNT", 100, usage_limit=5, usage_count=5)
        response = validate(client, "LIMITED", 5000)
        assert response.json()["error"] == "This coupon has reached its usage limit"

    def test_minimum_order_amount(self, client, make_coupon):
        make_coupon("BIG", "FIXED_AMOUNT", 100, min_order_amount=10000)
        response = validate(client, "BIG", 5000)
        assert response.status_code == 400
        assert response.json()["error"] == "Minimum order amount is PKR 10,000"

    def test_inactive_checked_before_expiry(self, client, make_coupon):
        make_coupon(
            "BOTH", "FIXED_AMOUNT", 100,
            is_active=False,
            expires_at=datetime.now(timezone.utc) - timedelta(days=1),
        )
        assert validate(client, "BOTH", 5000).json()["error"] == "This coupon is no longer active"

    def test_requires_signed_in_user(self, client, make_coupon):
        make_coupon("SAVE10", "PERCENTAGE", 10)
        response = validate(client, "SAVE10", 5000, headers={})
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    def test_missing_subtotal_is_a_validation_error(self, client):
        response = client.get("/api/coupons/validate", params={"code": "SAVE10"}, headers=USER)
        assert response.status_code == 400
        assert "subtotal" in response.json()["error"]


class TestPerUserLimit:
    def test_welcome_already_used(self, client, db, make_coupon, make_generator):
        make_coupon("WELCOME", "FIXED_AMOUNT", 500, per_user_limit=1)
        generator_id = make_generator()

        placed = client.post("/api/orders", json=checkout_body([line(generator_id)], coupon_code="WELCOME"), headers=USER)
        assert placed.status_code == 200

        response = validate(client, "WELCOME", 8000)
        assert response.status_code == 400
        assert response.json()["error"] == "You have already used this coupon 1 time(s)"

    def test_other_users_unaffected(self, client, make_coupon, make_generator):
        make_coupon("WELCOME", "FIXED_AMOUNT", 500, per_user_limit=1)
        generator_id = make_generator()
        client.post("/api/orders", json=checkout_body([line(generator_id)], coupon_code="WELCOME"), headers=USER)

        response = validate(client, "WELCOME", 8000, headers={"X-User-Id": "user-2"})
        assert response.status_code == 200

    def test_cancelled_order_gives_allowance_back(self, client, make_coupon, make_generator):
        make_coupon("WELCOME", "FIXED_AMOUNT", 500, per_user_limit=1)
        generator_id = make_generator()
        placed = client.post("/api/orders", json=checkout_body([line(generator_id)], coupon_code="WELCOME"), headers=USER)
        order_id = placed.json()["order"]["id"]

        client.put(f"/api/orders/{order_id}", json={"action": "cancel"}, headers=USER)

        assert validate(client, "WELCOME", 8000).status_code == 200
        again = client.post("/api/orders", json=checkout_body([line(generator_id)], coupon_code="WELCOME"), headers=USER)
        assert again.status_code == 200

    def test_refunded_order_gives_allowance_back(self, client, db, make_coupon, make_generator):
        make_coupon("WELCOME", "FIXED_AMOUNT", 500, per_user_limit=1)
        generator_id = make_generator()
        placed = client.post("/api/orders", json=checkout_body([line(generator_id)], coupon_code="WELCOME"), headers=USER)
        order_id = placed.json()["order"]["id"]

        refunded = client.put(f"/api/admin/orders/{order_id}", json={"status": "REFUNDED"}, headers=ADMIN)
        assert refunded.status_code == 200
        assert db["couponusage"].find_one({"user_id": "user-1"})["count"] == 0

        assert validate(client, "WELCOME", 8000).status_code == 200
        again = client.post("/api/orders", json=checkout_body([line(generator_id)], coupon_code="WELCOME"), headers=USER)
        assert again.status_code == 200

    def test_repeated_refund_releases_once(self, client, db, make_coupon, make_generator):
        make_coupon("WELCOME", "FIXED_AMOUNT", 500, per_user_limit=1)
        generator_id = make_generator()
        order_id = client.post(
            "/api/orders", json=checkout_body([line(generator_id)], coupon_code="WELCOME"), headers=USER
        ).json()["order"]["id"]
        client.put(f"/api/admin/orders/{order_id}", json={"status": "REFUNDED"}, headers=ADMIN)
        client.post("/api/orders", json=checkout_body([line(generator_id)], coupon_code="WELCOME"), headers=USER)

        client.put(f"/api/admin/orders/{order_id}", json={"status": "REFUNDED"}, headers=ADMIN)
        assert db["couponusage"].find_one({"user_id": "user-1"})["count"] == 1
        assert validate(client, "WELCOME", 8000).status_code == 400


class TestClaimCoupon:
    def test_per_user_ledger_blocks_second_claim(self, db, make_coupon):
        coupon_id = make_coupon("ONCE", "FIXED_AMOUNT", 100, per_user_limit=1)
        coupon = db["coupon"].find_one({"_id": ObjectId(coupon_id)})

        claim_coupon(db, coupon, "user-1")
        with pytest.raises(RuleViolation, match="already used this coupon 1 time"):
            claim_coupon(db, coupon, "user-1")

        # the rejected claim did not count globally
        assert db["coupon"].find_one({"_id": ObjectId(coupon_id)})["usage_count"] == 1

    def test_global_limit_is_enforced(self, db, make_coupon):
        coupon_id = make_coupon("SCARCE", "FIXED_AMOUNT", 100, usage_limit=1)
        coupon = db["coupon"].find_one({"_id": ObjectId(coupon_id)})

        claim_coupon(db, coupon, "user-1")
        with pytest.raises(RuleViolation, match="reached its usage limit"):
            claim_coupon(db, coupon, "user-2")
        assert db["coupon"].find_one({"_id": ObjectId(coupon_id)})["usage_count"] == 1

    def test_released_claim_can_be_reused(self, db, make_coupon):
        coupon_id = make_coupon("ONCE", "FIXED_AMOUNT", 100, per_user_limit=1)
        coupon = db["coupon"].find_one({"_id": ObjectId(coupon_id)})

        claim_coupon(db, coupon, "user-1")
        release_user_claim(db, coupon_id, "user-1")
        claim_coupon(db, coupon, "user-1")

        ledger = db["couponusage"].find_one({"coupon_id": coupon_id, "user_id": "user-1"})
        assert ledger["count"] == 1


class TestAdminCoupons:
    def test_create_uppercases_and_rejects_duplicates(self, client, db):
        body = {"code": "summer", "type": "PERCENTAGE", "value": 15}
        created = client.post("/api/admin/coupons", json=body, headers=ADMIN)
        assert created.status_code == 200
        assert created.json()["code"] == "SUMMER"
        assert created.json()["usage_count"] == 0

        duplicate = client.post("/api/admin/coupons", json=body, headers=ADMIN)
        assert duplicate.status_code == 400
        assert duplicate.json()["error"] == "Coupon code SUMMER already exists"

    def test_update_and_delete(self, client, make_coupon):
        coupon_id = make_coupon("SAVE10", "PERCENTAGE", 10)

        updated = client.put(f"/api/admin/coupons/{coupon_id}", json={"is_active": False}, headers=ADMIN)
        assert updated.status_code == 200
        assert updated.json()["is_active"] is False

        assert client.delete(f"/api/admin/coupons/{coupon_id}", headers=ADMIN).json() == {"success": True}
        assert client.delete(f"/api/admin/coupons/{coupon_id}", headers=ADMIN).status_code == 404

    def test_users_cannot_manage_coupons(self, client):
        response = client.post("/api/admin/coupons", json={"code": "X123", "type": "PERCENTAGE", "value": 5}, headers=USER)
        assert response.status_code == 401

    def test_evaluate_directly(self, db, make_coupon):
        make_coupon("SAVE10", "PERCENTAGE", 10, max_discount=500, min_order_amount=1000)
        quote = evaluate_coupon(db, "save10", "user-1", 8000)
        assert quote.discount == 500
        assert quote.message == "Coupon applied! You save PKR 500"
