"""
HTTP tests for the award lifecycle API.
"""
import inspect
from datetime import timedelta

import pytest
from fastapi.routing import APIRoute
from fastapi.testclient import TestClient

import backend.services.award_service as award_service_module
import backend.services.rfq_service as rfq_service_module
import backend.services.scoring_service as scoring_service_module
from backend.main import app

from service_builders import Clock, create_request, make_services

OFFICER_HEADERS = {"X-User-Id": "officer", "X-User-Role": "Procurement_Officer"}
APPROVER_HEADERS = {"X-User-Id": "approver", "X-User-Role": "Approver"}
FIN_HEADERS = {"X-User-Id": "fin-1", "X-User-Role": "Committee_Member"}
TECH_HEADERS = {"X-User-Id": "tech-1", "X-User-Role": "Committee_Member"}


def vendor_headers(vendor_id):
    return {"X-User-Id": f"user-{vendor_id}", "X-User-Role": "Vendor", "X-Vendor-Id": vendor_id}


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def client(clock):
    rfq, scoring, award = make_services(clock)
    rfq_service_module._rfq_service = rfq
    scoring_service_module._scoring_service = scoring
    award_service_module._award_service = award
    with TestClient(app) as test_client:
        yield test_client


def _create(client):
    response = client.post(
        "/api/requisitions",
        json=create_request().model_dump(mode="json"),
        headers=OFFICER_HEADERS,
    )
    assert response.status_code == 200, response.text
    return response.json()["id"]


def _open(client, clock):
    requisition_id = _create(client)
    response = client.post(
        f"/api/requisitions/{requisition_id}/send-rfq",
        json={"deadline": (clock.now + timedelta(days=1)).isoformat()},
        headers=OFFICER_HEADERS,
    )
    assert response.status_code == 200, response.text
    return requisition_id


def _quote(client, requisition_id, vendor_id, price):
    return client.post(
        f"/api/requisitions/{requisition_id}/quotations",
        json={"vendor_name": vendor_id.upper(), "items": [
            {"requisition_item_id": "item-1", "quantity": 5, "unit_price": price},
        ]},
        headers=vendor_headers(vendor_id),
    )


def _score(client, requisition_id, quotation, mark):
    quote_item_id = quotation["items"][0]["id"]
    url = f"/api/requisitions/{requisition_id}/quotations/{quotation['id']}/score"
    fin = client.post(url, json={"item_scores": [
        {"quote_item_id": quote_item_id, "scores": [{"criterion_id": "price", "score": mark}]},
    ]}, headers=FIN_HEADERS)
    assert fin.status_code == 200, fin.text
    tech = client.post(url, json={"item_scores": [
        {"quote_item_id": quote_item_id, "scores": [
            {"criterion_id": "quality", "score": mark},
            {"criterion_id": "delivery", "score": mark},
        ]},
    ]}, headers=TECH_HEADERS)
    assert tech.status_code == 200, tech.text


class TestBasics:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_missing_identity_is_forbidden(self, client):
        response = client.post("/api/requisitions", json=create_request().model_dump(mode="json"))
        assert response.status_code == 403
        assert response.json()["error"] == "Unauthorized"

    def test_unknown_requisition(self, client):
        response = client.get("/api/requisitions/missing")
        assert response.status_code == 404

    def test_create_and_read(self, client):
        requisition_id = _create(client)

        view = client.get(f"/api/requisitions/{requisition_id}").json()
        assert view["requisition"]["status"] == "PreApproved"
        assert "send_rfq" in view["allowed_actions"]
        assert view["stage_description"] == "Approved requisition, RFQ not yet sent"

        listing = client.get("/api/requisitions", params={"status": "PreApproved"}).json()
        assert listing["total_count"] == 1

    def test_bad_weights_are_rejected(self, client):
        payload = create_request().model_dump(mode="json")
        payload["evaluation_criteria"]["financial_weight"] = 50
        response = client.post("/api/requisitions", json=payload, headers=OFFICER_HEADERS)
        assert response.status_code == 400


class TestLifecycleOverHttp:

    def test_early_scoring_is_a_failed_precondition(self, client, clock):
        requisition_id = _open(client, clock)
        response = client.post(f"/api/requisitions/{requisition_id}/start-scoring", headers=OFFICER_HEADERS)
        assert response.status_code == 412

    def test_vendor_cannot_finalize(self, client, clock):
        requisition_id = _open(client, clock)
        response = client.post(
            f"/api/requisitions/{requisition_id}/finalize-award", json={}, headers=vendor_headers("v1"),
        )
        assert response.status_code == 403

    def test_finalize_before_scoring_is_a_conflict(self, client, clock):
        requisition_id = _open(client, clock)
        response = client.post(
            f"/api/requisitions/{requisition_id}/finalize-award", json={}, headers=OFFICER_HEADERS,
        )
        assert response.status_code == 409

    def test_award_to_closure(self, client, clock):
        requisition_id = _open(client, clock)
        quotations = {}
        for vendor_id, price in (("v1", 900), ("v2", 950)):
            response = _quote(client, requisition_id, vendor_id, price)
            assert response.status_code == 200, response.text
            quotations[vendor_id] = response.json()

        clock.advance(days=2)
        assert client.post(
            f"/api/requisitions/{requisition_id}/start-scoring", headers=OFFICER_HEADERS
        ).status_code == 200

        _score(client, requisition_id, quotations["v1"], 90)
        _score(client, requisition_id, quotations["v2"], 80)
        client.post(f"/api/requisitions/{requisition_id}/submit-scores", headers=FIN_HEADERS)
        progress = client.post(f"/api/requisitions/{requisition_id}/submit-scores", headers=TECH_HEADERS).json()
        assert progress["complete"] is True

        view = client.post(
            f"/api/requisitions/{requisition_id}/finalize-award",
            json={"award_response_deadline": (clock.now + timedelta(days=1)).isoformat()},
            headers=OFFICER_HEADERS,
        ).json()
        assert view["requisition"]["status"] == "Awarded"
        statuses = {q["vendor_id"]: q["status"] for q in view["quotations"]}
        assert statuses == {"v1": "Pending_Award", "v2": "Standby"}

        declined = client.post(
            f"/api/requisitions/{requisition_id}/respond",
            json={"target_id": quotations["v1"]["id"], "action": "reject", "reason": "capacity"},
            headers=vendor_headers("v1"),
        ).json()
        assert declined["outcome"] == "promoted"
        assert declined["promoted_target_id"] == quotations["v2"]["id"]

        accepted = client.post(
            f"/api/requisitions/{requisition_id}/respond",
            json={"target_id": quotations["v2"]["id"], "action": "accept"},
            headers=vendor_headers("v2"),
        )
        assert accepted.status_code == 200, accepted.text

        approved = client.post(f"/api/requisitions/{requisition_id}/approve", json={}, headers=APPROVER_HEADERS)
        assert approved.json()["status"] == "PostApproved"

        orders = client.post(f"/api/requisitions/{requisition_id}/purchase-orders", headers=OFFICER_HEADERS).json()
        assert [po["vendor_id"] for po in orders] == ["v2"]

        fulfilled = client.post(f"/api/purchase-orders/{orders[0]['id']}/fulfill", headers=OFFICER_HEADERS)
        assert fulfilled.json()["status"] == "Fulfilled"
        closed = client.post(f"/api/requisitions/{requisition_id}/close", headers=OFFICER_HEADERS)
        assert closed.json()["status"] == "Closed"

        audit = client.get(f"/api/requisitions/{requisition_id}/audit").json()
        actions = [e["action"] for e in audit["entries"]]
        assert actions[0] == "CREATE_REQUISITION"
        assert "PROMOTE_STANDBY" in actions


def _approved(client, clock):
    """v1 wins and accepts; the award is approved."""
    requisition_id = _open(client, clock)
    quotations = {v: _quote(client, requisition_id, v, p).json() for v, p in (("v1", 900), ("v2", 950))}
    clock.advance(days=2)
    client.post(f"/api/requisitions/{requisition_id}/start-scoring", headers=OFFICER_HEADERS)
    _score(client, requisition_id, quotations["v1"], 90)
    _score(client, requisition_id, quotations["v2"], 80)
    client.post(f"/api/requisitions/{requisition_id}/submit-scores", headers=FIN_HEADERS)
    client.post(f"/api/requisitions/{requisition_id}/submit-scores", headers=TECH_HEADERS)
    client.post(f"/api/requisitions/{requisition_id}/finalize-award", json={}, headers=OFFICER_HEADERS)
    client.post(
        f"/api/requisitions/{requisition_id}/respond",
        json={"target_id": quotations["v1"]["id"], "action": "accept"},
        headers=vendor_headers("v1"),
    )
    approved = client.post(f"/api/requisitions/{requisition_id}/approve", json={}, headers=APPROVER_HEADERS)
    assert approved.json()["status"] == "PostApproved", approved.text
    return requisition_id


class TestRecoveryAndContractsOverHttp:

    def test_service_endpoints_are_plain_functions(self):
        routes = [r for r in app.routes if isinstance(r, APIRoute) and r.path.startswith("/api/")]
        assert routes
        assert [r.path for r in routes if inspect.iscoroutinefunction(r.endpoint)] == []

    def test_extend_scoring_deadline(self, client, clock):
        requisition_id = _open(client, clock)
        for vendor_id, price in (("v1", 900), ("v2", 950)):
            _quote(client, requisition_id, vendor_id, price)
        clock.advance(days=2)
        client.post(f"/api/requisitions/{requisition_id}/start-scoring", headers=OFFICER_HEADERS)

        new_deadline = clock.now + timedelta(days=2)
        response = client.post(
            f"/api/requisitions/{requisition_id}/extend-scoring-deadline",
            json={"new_deadline": new_deadline.isoformat()},
            headers=OFFICER_HEADERS,
        )
        assert response.status_code == 200, response.text

        clock.advance(days=3)
        progress = client.get(f"/api/requisitions/{requisition_id}/scoring-progress").json()
        assert progress["overdue"] == ["fin-1", "tech-1"]

    def test_item_restart_needs_item_strategy(self, client, clock):
        requisition_id = _open(client, clock)
        response = client.post(
            f"/api/requisitions/{requisition_id}/restart-item-rfq",
            json={"item_ids": ["item-1"], "new_deadline": (clock.now + timedelta(days=1)).isoformat()},
            headers=OFFICER_HEADERS,
        )
        assert response.status_code == 400

    def test_contracts(self, client, clock):
        requisition_id = _approved(client, clock)
        start = clock.now + timedelta(days=1)
        payload = {
            "vendor_id": "v1",
            "start_date": start.isoformat(),
            "end_date": (start + timedelta(days=365)).isoformat(),
        }

        created = client.post(f"/api/requisitions/{requisition_id}/contracts", json=payload, headers=OFFICER_HEADERS)
        assert created.status_code == 200, created.text
        assert created.json()["status"] == "Draft"
        assert created.json()["total_amount"] == pytest.approx(5 * 900)

        duplicate = client.post(f"/api/requisitions/{requisition_id}/contracts", json=payload, headers=OFFICER_HEADERS)
        assert duplicate.status_code == 400
        loser = client.post(
            f"/api/requisitions/{requisition_id}/contracts",
            json={**payload, "vendor_id": "v2"},
            headers=OFFICER_HEADERS,
        )
        assert loser.status_code == 412

        clock.advance(days=2)
        listing = client.get(f"/api/requisitions/{requisition_id}/contracts").json()
        assert listing["total_count"] == 1
        assert listing["contracts"][0]["status"] == "Active"
        assert client.get("/api/contracts").json()["total_count"] == 1
