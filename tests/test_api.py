"""
End-to-end tests through the HTTP API.
"""

import inspect

from sqlalchemy.exc import OperationalError
from sqlmodel import Session

from policygraph.routers.sync import run_reconciliation


def create_customer(client, customer_id=1, **extra):
    payload = {"customer_id": customer_id, "first_name": "Ana", "last_name": "Lopez"}
    payload.update(extra)
    return client.post("/v1/customers", json=payload)


def create_policy(client, policy_number="P1", **extra):
    payload = {
        "policy_number": policy_number,
        "customer_id": 1,
        "agent_id": 5,
        "type": "Auto",
        "start_date": "2025-01-01",
        "end_date": "2025-12-31",
    }
    payload.update(extra)
    return client.post("/v1/policies", json=payload)


# ============================================================================
# 1. CUSTOMER, AGENT AND POLICY FLOW
# ============================================================================

class TestPolicyFlow:
    """A policy needs an existing, active customer and agent."""

    def test_policy_rejected_until_agent_exists(self, client, graph):
        assert create_customer(client).status_code == 201
        assert graph.node("Customer", "1")["first_name"] == "Ana"

        response = create_policy(client)
        assert response.status_code == 400
        assert response.json()["error"] == "agent_missing"
        assert client.get("/v1/policies/P1").status_code == 404
        assert graph.node("Policy", "P1") is None

        response = client.post("/v1/agents", json={"agent_id": 5, "active": True})
        assert response.status_code == 201

        response = create_policy(client)
        assert response.status_code == 201
        assert response.json()["status"] == "ACTIVE"
        assert response.json()["sync_error"] is False
        assert graph.has_edge("Customer", "1", "HAS", "Policy", "P1")
        assert graph.has_edge("Agent", "5", "MANAGES", "Policy", "P1")

    def test_duplicate_policy_conflict(self, client):
        create_customer(client)
        client.post("/v1/agents", json={"agent_id": 5})
        assert create_policy(client).status_code == 201

        response = create_policy(client)
        assert response.status_code == 409
        assert response.json()["error"] == "policy_exists"

    def test_deactivated_customer_cannot_get_policy(self, client, graph):
        create_customer(client)
        client.post("/v1/agents", json={"agent_id": 5})

        response = client.patch("/v1/customers/1/deactivate")
        assert response.status_code == 200
        assert response.json() == {"customer_id": "1", "active": False, "sync_status": "synced"}
        assert graph.node("Customer", "1")["baja"] is True

        response = create_policy(client, "P2")
        assert response.status_code == 400
        assert response.json()["error"] == "customer_inactive"

    def test_policy_dates_in_legacy_format(self, client):
        create_customer(client)
        client.post("/v1/agents", json={"agent_id": 5})

        response = create_policy(client, start_date="1/3/2025", end_date="28/2/2026")
        assert response.status_code == 201
        assert response.json()["start_date"] == "2025-03-01"

    def test_policy_graph_failure_is_swallowed(self, client, graph):
        create_customer(client)
        client.post("/v1/agents", json={"agent_id": 5})
        graph.down = True

        response = create_policy(client)
        assert response.status_code == 201
        assert response.json()["sync_error"] is True

        deferrals = client.get("/v1/sync/deferrals").json()["items"]
        assert [(d["collection"], d["entity_key"]) for d in deferrals] == [("policies", "P1")]


# ============================================================================
# 2. CUSTOMERS
# ============================================================================

class TestCustomers:

    def test_duplicate_customer(self, client):
        assert create_customer(client).status_code == 201
        response = create_customer(client, first_name="Otra")
        assert response.status_code == 409
        assert response.json()["error"] == "customer_exists"

    def test_invalid_payload(self, client):
        response = client.post("/v1/customers", json={"customer_id": 1, "first_name": "Ana"})
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_payload"

    def test_flag_strings_accepted(self, client):
        response = create_customer(client, active="no")
        assert response.status_code == 201
        assert response.json()["active"] is False

    def test_partial_update(self, client, graph):
        create_customer(client)
        response = client.patch("/v1/customers/1", json={"email": "ana@example.com"})
        assert response.status_code == 200
        assert response.json()["email"] == "ana@example.com"
        assert response.json()["first_name"] == "Ana"
        assert graph.node("Customer", "1")["email"] == "ana@example.com"

    def test_empty_update(self, client):
        create_customer(client)
        response = client.patch("/v1/customers/1", json={})
        assert response.status_code == 400
        assert response.json()["error"] == "empty_update"

    def test_null_active_keeps_customer_retired(self, client, graph):
        create_customer(client, 9)
        assert client.patch("/v1/customers/9/deactivate").status_code == 200

        response = client.patch("/v1/customers/9", json={"active": None, "phone": "555-0101"})
        assert response.status_code == 200
        assert response.json()["active"] is False
        assert graph.node("Customer", "9")["baja"] is True

        response = client.patch("/v1/customers/9", json={"active": None})
        assert response.status_code == 400
        assert response.json()["error"] == "empty_update"

    def test_identity_change_rejected(self, client):
        create_customer(client)
        response = client.patch("/v1/customers/1", json={"customer_id": 2})
        assert response.status_code == 400
        assert response.json()["error"] == "identity_change"

    def test_unknown_field_rejected(self, client):
        create_customer(client)
        response = client.patch("/v1/customers/1", json={"nickname": "Anita"})
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_payload"

    def test_unknown_customer(self, client):
        assert client.get("/v1/customers/99").status_code == 404
        assert client.patch("/v1/customers/99/deactivate").status_code == 404


# ============================================================================
# 3. CLAIMS
# ============================================================================

class TestClaims:

    def setup_policy(self, client, **extra):
        create_customer(client)
        client.post("/v1/agents", json={"agent_id": 5})
        assert create_policy(client, **extra).status_code == 201

    def test_create_claim(self, client, graph):
        self.setup_policy(client)

        response = client.post("/v1/claims", json={"policy_number": "P1", "type": "Accidente"})
        assert response.status_code == 201
        claim = response.json()
        assert claim["claim_id"] == 1000
        assert claim["status"] == "Open"
        assert graph.has_edge("Policy", "P1", "HAS", "Claim", str(claim["id"]))

        assert client.get("/v1/claims/1000").json()["type"] == "Accidente"

    def test_claim_against_expired_policy(self, client, graph):
        self.setup_policy(client, status="Expired")

        response = client.post("/v1/claims", json={"policy_number": "P1", "type": "Robo"})
        assert response.status_code == 400
        assert response.json()["error"] == "policy_not_eligible"
        assert graph.count_nodes("Claim") == 0

    def test_claim_graph_failure_is_surfaced(self, client, graph):
        self.setup_policy(client)
        graph.down = True

        response = client.post("/v1/claims", json={"policy_number": "P1", "type": "Robo"})
        assert response.status_code == 503
        assert response.json()["error"] == "graph_sync_failed"

        stored = client.get("/v1/claims/1000")
        assert stored.status_code == 200
        assert stored.json()["sync_error"] is True


# ============================================================================
# 4. RECORDS AND RECONCILIATION
# ============================================================================

class TestRecords:

    def test_vehicle_requires_customer(self, client):
        response = client.post("/v1/vehicles", json={"plate": "ab123cd", "customer_id": 1})
        assert response.status_code == 400
        assert response.json()["error"] == "customer_missing"

    def test_vehicle_created(self, client):
        create_customer(client)
        response = client.post("/v1/vehicles", json={"plate": "ab123cd", "customer_id": 1, "insured": "si"})
        assert response.status_code == 201
        assert response.json()["plate"] == "AB123CD"
        assert response.json()["insured"] is True

        response = client.post("/v1/vehicles", json={"plate": "AB123CD", "customer_id": 1})
        assert response.status_code == 409

    def test_duplicate_agent(self, client):
        assert client.post("/v1/agents", json={"agent_id": 5}).status_code == 201
        response = client.post("/v1/agents", json={"agent_id": "5"})
        assert response.status_code == 409
        assert response.json()["error"] == "agent_exists"


class TestReconcileEndpoint:

    def test_reconcile_repairs_deferred_writes(self, client, graph):
        create_customer(client)
        client.post("/v1/agents", json={"agent_id": 5})
        graph.down = True
        create_policy(client)
        graph.down = False

        response = client.post("/v1/sync/reconcile")
        assert response.status_code == 200
        summary = response.json()
        assert summary["policies"] == 1
        assert summary["skipped"] == 0
        assert summary["deferrals_resolved"] == 1

        assert client.get("/v1/sync/deferrals").json()["items"] == []
        assert client.get("/v1/policies/P1").json()["sync_error"] is False
        assert graph.has_edge("Agent", "5", "MANAGES", "Policy", "P1")

    def test_reconcile_runs_off_the_event_loop(self):
        """The job is blocking work, so the endpoint is a plain def run in the threadpool."""
        assert not inspect.iscoroutinefunction(run_reconciliation)

    def test_reconcile_with_primary_failure(self, client, monkeypatch):
        create_customer(client)

        def broken(*args, **kwargs):
            raise OperationalError("SELECT 1", {}, Exception("disk I/O error"))

        monkeypatch.setattr(Session, "exec", broken)
        response = client.post("/v1/sync/reconcile")
        assert response.status_code == 500
        assert response.json()["error"] == "primary_store_error"

    def test_reconcile_with_graph_down(self, client, graph):
        create_customer(client)
        graph.down = True

        response = client.post("/v1/sync/reconcile")
        assert response.status_code == 503
        assert response.json()["error"] == "graph_unavailable"
