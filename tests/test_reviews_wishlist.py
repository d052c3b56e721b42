"""Tests for product reviews and the wishlist."""

from bson import ObjectId

from conftest import ADMIN, OTHER_USER, USER, checkout_body, line


def review_body(product_id, rating=5, **overrides):
    body = {
        "item_type": "GENERATOR",
        "product_id": product_id,
        "rating": rating,
        "comment": "Runs quietly and starts first time.",
    }
    body.update(overrides)
    return body


class TestReviews:
    def test_create_and_list_with_average(self, client, make_generator):
        generator_id = make_generator()
        assert client.post("/api/reviews", json=review_body(generator_id, 5), headers=USER).status_code == 200
        assert client.post("/api/reviews", json=review_body(generator_id, 4), headers=OTHER_USER).status_code == 200

        data = client.get("/api/reviews", params={"item_type": "GENERATOR", "product_id": generator_id}).json()
        assert data["total"] == 2
        assert data["average_rating"] == 4.5

    def test_one_review_per_product(self, client, make_generator):
        generator_id = make_generator()
        client.post("/api/reviews", json=review_body(generator_id), headers=USER)
        response = client.post("/api/reviews", json=review_body(generator_id), headers=USER)
        assert response.status_code == 400
        assert response.json()["error"] == "You have already reviewed this product"

    def test_rating_bounds(self, client, make_generator):
        response = client.post("/api/reviews", json=review_body(make_generator(), rating=6), headers=USER)
        assert response.status_code == 400

    def test_verified_purchase(self, client, db, make_generator):
        generator_id = make_generator()
        order_id = client.post("/api/orders", json=checkout_body([line(generator_id)]), headers=USER).json()["order"]["id"]
        db["order"].update_one({"_id": ObjectId(order_id)}, {"$set": {"status": "DELIVERED"}})

        verified = client.post("/api/reviews", json=review_body(generator_id), headers=USER).json()
        unverified = client.post("/api/reviews", json=review_body(generator_id), headers=OTHER_USER).json()
        assert verified["is_verified_purchase"] is True
        assert unverified["is_verified_purchase"] is False

    def test_moderation_hides_review(self, client, make_generator):
        generator_id = make_generator()
        review_id = client.post("/api/reviews", json=review_body(generator_id), headers=USER).json()["id"]

        hidden = client.put(f"/api/admin/reviews/{review_id}", json={"is_approved": False}, headers=ADMIN)
        assert hidden.json()["is_approved"] is False

        data = client.get("/api/reviews", params={"item_type": "GENERATOR", "product_id": generator_id}).json()
        assert data["total"] == 0
        assert data["average_rating"] is None


class TestWishlist:
    def test_add_list_remove(self, client, make_part):
        part_id = make_part(name="Spark Plug")

        added = client.post("/api/user/wishlist", json={"item_type": "PART", "product_id": part_id}, headers=USER)
        assert added.status_code == 200

        items = client.get("/api/user/wishlist", headers=USER).json()
        assert items[0]["product"]["name"] == "Spark Plug"

        entry_id = added.json()["id"]
        assert client.delete(f"/api/user/wishlist/{entry_id}", headers=USER).json() == {"success": True}
        assert client.get("/api/user/wishlist", headers=USER).json() == []

    def test_duplicate_rejected(self, client, make_part):
        part_id = make_part()
        client.post("/api/user/wishlist", json={"item_type": "PART", "product_id": part_id}, headers=USER)
        response = client.post("/api/user/wishlist", json={"item_type": "PART", "product_id": part_id}, headers=USER)
        assert response.status_code == 400
        assert response.json()["error"] == "Already in your wishlist"

    def test_cannot_remove_others_entry(self, client, make_part):
        part_id = make_part()
        entry_id = client.post("/api/user/wishlist", json={"item_type": "PART", "product_id": part_id}, headers=USER).json()["id"]
        assert client.delete(f"/api/user/wishlist/{entry_id}", headers=OTHER_USER).status_code == 404
