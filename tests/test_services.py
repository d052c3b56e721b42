"""Tests for service requests."""

import pytest

from conftest import ADMIN, OTHER_USER, STAFF, USER
from service_requests import can_transition


def request_body(**overrides):
    body = {
        "contact_name": "Ali Khan",
        "contact_phone": "03001234567",
        "contact_email": "ali@example.com",
        "service_address": "12 Mall Road",
        "service_city": "Lahore",
        "service_state": "Punjab",
        "service_type": "REPAIR",
        "problem_title": "Will not start",
        "problem_description": "The generator cranks but never fires up in the morning.",
    }
    body.update(overrides)
    return body


@pytest.fixture
def request_id(client):
    response = client.post("/api/services", json=request_body(), headers=USER)
    assert response.status_code == 200
    return response.json()["request"]["id"]


class TestCustomerRequests:
    def test_create(self, client, db):
        response = client.post("/api/services", json=request_body(priority="URGENT"), headers=USER)
        assert response.status_code == 200
        data = response.json()["request"]
        assert data["request_number"].startswith("SRV-")
        assert data["status"] == "PENDING"
        assert data["priority"] == "URGENT"
        assert db["notification"].count_documents({"type": "SERVICE_REQUEST_SUBMITTED"}) == 1

    def test_short_description_rejected(self, client):
        response = client.post("/api/services", json=request_body(problem_description="broken"), headers=USER)
        assert response.status_code == 400
        assert "problem_description" in response.json()["error"]

    def test_list_and_detail_are_private(self, client, request_id):
        assert client.get("/api/services", headers=USER).json()["total"] == 1
        assert client.get("/api/services", headers=OTHER_USER).json()["total"] == 0
        assert client.get(f"/api/services/{request_id}", headers=OTHER_USER).status_code == 404

    def test_cancel_pending(self, client, request_id):
        response = client.put(f"/api/services/{request_id}", json={"action": "cancel"}, headers=USER)
        assert response.status_code == 200
        assert response.json()["status"] == "CANCELLED"

    def test_cannot_cancel_after_review_started(self, client, request_id):
        client.put(f"/api/admin/services/{request_id}", json={"status": "REVIEWING"}, headers=STAFF)

        response = client.put(f"/api/services/{request_id}", json={"action": "cancel"}, headers=USER)
        assert response.status_code == 400
        assert response.json()["error"] == "Only pending service requests can be cancelled"


class TestStaffUpdates:
    def test_full_lifecycle(self, client, db, request_id):
        for status in ("REVIEWING", "QUOTED", "QUOTE_SENT", "APPROVED", "IN_PROGRESS", "COMPLETED"):
            response = client.put(f"/api/admin/services/{request_id}", json={"status": status}, headers=STAFF)
            assert response.status_code == 200, response.json()

        data = client.get(f"/api/admin/services/{request_id}", headers=STAFF).json()
        assert data["status"] == "COMPLETED"
        assert data["completed_at"] is not None
        assert data["quoted_at"] is not None
        assert db["notification"].count_documents({"type": "SERVICE_UPDATE"}) == 6

    def test_quote_details(self, client, request_id):
        response = client.put(
            f"/api/admin/services/{request_id}",
            json={"status": "QUOTED", "quoted_price": 12000, "diagnosis": "Faulty starter motor"},
            headers=STAFF,
        )
        assert response.json()["quoted_price"] == 12000
        assert response.json()["diagnosis"] == "Faulty starter motor"

    def test_backwards_move_rejected(self, client, request_id):
        client.put(f"/api/admin/services/{request_id}", json={"status": "APPROVED"}, headers=STAFF)
        response = client.put(f"/api/admin/services/{request_id}", json={"status": "REVIEWING"}, headers=STAFF)
        assert response.status_code == 400
        assert response.json()["error"] == "Cannot move a service request from APPROVED to REVIEWING"

    def test_staff_can_cancel_in_progress(self, client, request_id):
        client.put(f"/api/admin/services/{request_id}", json={"status": "IN_PROGRESS"}, headers=STAFF)
        response = client.put(f"/api/admin/services/{request_id}", json={"status": "CANCELLED"}, headers=ADMIN)
        assert response.json()["status"] == "CANCELLED"

    def test_filters(self, client, request_id):
        client.post("/api/services", json=request_body(priority="HIGH"), headers=OTHER_USER)
        data = client.get("/api/admin/services", params={"priority": "HIGH"}, headers=STAFF).json()
        assert data["total"] == 1

    def test_users_cannot_update(self, client, request_id):
        response = client.put(f"/api/admin/services/{request_id}", json={"status": "REVIEWING"}, headers=USER)
        assert response.status_code == 401


class TestTransitions:
    @pytest.mark.parametrize("current,target,back_office,allowed", [
        ("PENDING", "CANCELLED", False, True),
        ("REVIEWING", "CANCELLED", False, False),
        ("REVIEWING", "CANCELLED", True, True),
        ("PENDING", "REVIEWING", False, False),
        ("QUOTED", "QUOTE_SENT", True, True),
        ("QUOTE_SENT", "QUOTED", True, False),
        ("COMPLETED", "CANCELLED", True, False),
        ("CANCELLED", "PENDING", True, False),
    ])
    def test_can_transition(self, current, target, back_office, allowed):
        assert can_transition(current, target, back_office) is allowed
