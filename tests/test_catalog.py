"""Tests for the public catalog and admin catalog management."""

from bson import ObjectId

import catalog
from conftest import ADMIN, STAFF, USER
from schemas import ItemType


def generator_body(**overrides):
    body = {
        "name": "Cummins 20kVA",
        "slug": "cummins-20kva",
        "description": "Silent canopy diesel generator",
        "power_kva": 20,
        "power_kw": 16,
        "fuel_type": "DIESEL",
        "brand": "Cummins",
        "price": 450000,
        "stock": 3,
    }
    body.update(overrides)
    return body


class TestPublicCatalog:
    def test_list_hides_inactive(self, client, make_generator):
        make_generator(name="Visible")
        make_generator(name="Hidden", is_active=False)

        data = client.get("/api/generators").json()
        assert data["total"] == 1
        assert data["items"][0]["name"] == "Visible"

    def test_filters_and_sort(self, client, make_generator):
        make_generator(brand="Perkins", price=300000, power_kva=15)
        make_generator(brand="Cummins", price=100000, power_kva=5)
        make_generator(brand="Cummins", price=200000, power_kva=30, stock=0)

        data = client.get("/api/generators", params={"brand": "cummins", "sort": "price-high"}).json()
        assert [g["price"] for g in data["items"]] == [200000, 100000]

        in_stock = client.get("/api/generators", params={"brand": "cummins", "in_stock": True}).json()
        assert in_stock["total"] == 1

        powerful = client.get("/api/generators", params={"min_power": 10}).json()
        assert powerful["total"] == 2

    def test_search_escapes_regex(self, client, make_part):
        make_part(name="Filter (oil)")
        assert client.get("/api/parts", params={"search": "(oil"}).json()["total"] == 1

    def test_brand_counts(self, client, make_generator):
        make_generator(brand="Perkins")
        make_generator(brand="Perkins")
        brands = client.get("/api/generators").json()["brands"]
        assert {"brand": "Perkins", "count": 2} in brands

    def test_get_by_slug(self, client, make_part):
        make_part(slug="oil-filter")
        assert client.get("/api/parts/oil-filter").json()["slug"] == "oil-filter"
        assert client.get("/api/parts/missing").status_code == 404

    def test_inactive_slug_is_not_found(self, client, make_generator):
        make_generator(slug="retired", is_active=False)
        response = client.get("/api/generators/retired")
        assert response.status_code == 404
        assert response.json() == {"error": "Generator not found"}


class TestAdminCatalog:
    def test_create_generator(self, client, db):
        response = client.post("/api/admin/generators", json=generator_body(), headers=ADMIN)
        assert response.status_code == 200
        assert response.json()["slug"] == "cummins-20kva"
        assert db["auditlog"].count_documents({"entity": "GENERATOR", "action": "CREATE"}) == 1

    def test_duplicate_slug_rejected(self, client):
        client.post("/api/admin/generators", json=generator_body(), headers=ADMIN)
        response = client.post("/api/admin/generators", json=generator_body(), headers=ADMIN)
        assert response.status_code == 400
        assert response.json()["error"] == "A generator with slug cummins-20kva already exists"

    def test_duplicate_sku_rejected(self, client):
        client.post("/api/admin/generators", json=generator_body(sku="GEN-1"), headers=ADMIN)
        response = client.post("/api/admin/generators", json=generator_body(slug="other", sku="GEN-1"), headers=ADMIN)
        assert response.status_code == 400
        assert response.json()["error"] == "SKU GEN-1 is already in use"

    def test_invalid_body_rejected(self, client):
        response = client.post("/api/admin/generators", json=generator_body(power_kva=0), headers=ADMIN)
        assert response.status_code == 400
        assert "power_kva" in response.json()["error"]

    def test_unknown_family(self, client):
        response = client.post("/api/admin/boats", json={}, headers=ADMIN)
        assert response.status_code == 404

    def test_update_only_touches_submitted_fields(self, client, make_part):
        part_id = make_part(name="Air Filter", price=900)
        response = client.put(f"/api/admin/parts/{part_id}", json={"price": 1200}, headers=ADMIN)
        assert response.status_code == 200
        assert response.json()["price"] == 1200
        assert response.json()["name"] == "Air Filter"

    def test_negative_stock_rejected(self, client, make_part):
        part_id = make_part()
        response = client.put(f"/api/admin/parts/{part_id}", json={"stock": -1}, headers=ADMIN)
        assert response.status_code == 400

    def test_staff_cannot_edit_catalog(self, client):
        assert client.post("/api/admin/generators", json=generator_body(), headers=STAFF).status_code == 401


class TestStock:
    def test_reserve_is_conditional(self, db, make_generator):
        generator_id = make_generator(stock=2)
        assert catalog.reserve_stock(db, ItemType.GENERATOR, generator_id, 2)["stock"] == 0
        assert catalog.reserve_stock(db, ItemType.GENERATOR, generator_id, 1) is None

    def test_reserve_skips_inactive(self, db, make_generator):
        generator_id = make_generator(stock=2, is_active=False)
        assert catalog.reserve_stock(db, ItemType.GENERATOR, generator_id, 1) is None

    def test_staff_restock(self, client, db, make_part):
        part_id = make_part(stock=1)
        response = client.post(f"/api/admin/inventory/parts/{part_id}/restock", json={"quantity": 9}, headers=STAFF)
        assert response.status_code == 200
        assert db["part"].find_one({"_id": ObjectId(part_id)})["stock"] == 10

    def test_restock_requires_back_office(self, client, make_part):
        part_id = make_part()
        response = client.post(f"/api/admin/inventory/parts/{part_id}/restock", json={"quantity": 1}, headers=USER)
        assert response.status_code == 401
