"""
Tests for the reconciliation job.

Records are inserted straight into the primary store to simulate legacy
imports and drift between the two stores.
"""

from datetime import date

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import Session

from policygraph.db import load_seed_data
from policygraph.errors import ConflictError, GraphStoreError
from policygraph.jobs import reconcile as reconcile_cli
from policygraph.services.reconcile import ReconciliationJob, batched
from policygraph.services.sync import SyncCoordinator
from policygraph.store import PrimaryStore


@pytest.fixture
def legacy_records(primary):
    """Customer 1, agent 5, policy P1 and one claim written without the graph."""
    primary.insert("customers", {"customer_id": 1, "first_name": "Ana", "last_name": "Lopez", "active": "si"})
    primary.insert("agents", {"agent_id": 5, "first_name": "Marta", "active": "1"})
    policy_id = primary.insert("policies", {
        "policy_number": "P1",
        "customer_id": 1,
        "agent_id": 5,
        "type": "Auto",
        "start_date": "1/1/2025",
        "end_date": "2025-12-31",
        "status": "ACTIVE",
    })
    claim_id = primary.insert("claims", {
        "claim_id": 1000,
        "policy_number": "P1",
        "type": "Robo",
        "status": "Open",
        "claim_date": "3/2/2025",
    })
    return policy_id, claim_id


class TestReconciliation:

    def test_rebuilds_graph(self, primary, graph, legacy_records):
        _, claim_id = legacy_records
        summary = ReconciliationJob(primary, graph).run()

        assert summary.processed == 4
        assert summary.skipped == 0
        assert graph.node("Customer", "1")["active"] is True
        assert graph.node("Agent", "5")["active"] is True
        assert graph.node("Policy", "P1")["start_date"] == date(2025, 1, 1)
        assert graph.node("Claim", str(claim_id))["date"] == date(2025, 2, 3)
        assert graph.has_edge("Customer", "1", "HAS", "Policy", "P1")
        assert graph.has_edge("Agent", "5", "MANAGES", "Policy", "P1")
        assert graph.has_edge("Policy", "P1", "HAS", "Claim", str(claim_id))

    def test_idempotent(self, primary, graph, legacy_records):
        job = ReconciliationJob(primary, graph)
        job.run()
        first = graph.snapshot()
        job.run()
        assert graph.snapshot() == first

    def test_fill_absent_keeps_graph_values(self, primary, graph, legacy_records):
        graph.merge_node("Policy", "P1", {"type": "Moto"})
        ReconciliationJob(primary, graph).run()

        node = graph.node("Policy", "P1")
        assert node["type"] == "Moto"
        assert node["status"] == "ACTIVE"

    def test_claim_status_always_refreshed(self, primary, graph, legacy_records):
        _, claim_id = legacy_records
        graph.merge_node("Claim", str(claim_id), {"status": "OPEN", "type": "Choque"})
        primary.update_fields("claims", 1000, {"status": "Closed"})

        ReconciliationJob(primary, graph).run()

        node = graph.node("Claim", str(claim_id))
        assert node["status"] == "CLOSED"
        assert node["type"] == "Choque"

    def test_customer_flags_follow_primary(self, primary, graph, legacy_records):
        graph.merge_node("Customer", "1", {"active": True, "baja": False})
        primary.update_fields("customers", 1, {"active": False})

        ReconciliationJob(primary, graph).run()

        node = graph.node("Customer", "1")
        assert node["active"] is False
        assert node["baja"] is True

    def test_orphan_claims_skipped(self, primary, graph, legacy_records):
        primary.insert("claims", {"claim_id": 1001, "policy_number": "NOPE", "type": "Robo"})
        primary.insert("claims", {"claim_id": 1002, "policy_ref": 999, "type": "Robo"})

        summary = ReconciliationJob(primary, graph).run()

        assert summary.skipped == 2
        assert summary.claims == 1
        assert graph.count_nodes("Claim") == 1

    def test_claim_resolved_through_policy_ref(self, primary, graph, legacy_records):
        policy_id, _ = legacy_records
        claim_id = primary.insert("claims", {"claim_id": 1001, "policy_ref": policy_id, "type": "Robo"})

        ReconciliationJob(primary, graph).run()

        assert graph.has_edge("Policy", "P1", "HAS", "Claim", str(claim_id))

    def test_small_batches_cover_everything(self, primary, graph, legacy_records):
        for n in range(2, 7):
            primary.insert("customers", {"customer_id": n, "first_name": "C", "last_name": str(n)})

        summary = ReconciliationJob(primary, graph, batch_size=2).run()

        assert summary.customers == 6
        assert graph.count_nodes("Customer") == 6

    def test_batch_failure_aborts_run(self, primary, graph, legacy_records):
        graph.down = True
        with pytest.raises(GraphStoreError):
            ReconciliationJob(primary, graph).run()

    def test_invalid_batch_size(self, primary, graph):
        with pytest.raises(ValueError):
            ReconciliationJob(primary, graph, batch_size=0)


class TestRepairAfterFailures:
    """Reconciliation converges the graph after deferred derived writes."""

    def test_markers_cleared_and_deferrals_resolved(self, coordinator, primary, graph, active_parties):
        graph.down = True
        coordinator.create_policy({
            "policy_number": "P1", "customer_id": 1, "agent_id": 5, "type": "Auto",
            "start_date": "2025-01-01", "end_date": "2025-12-31",
        })
        assert primary.find_by_key("policies", "P1").sync_error is True
        assert len(primary.list_deferrals()) == 1

        graph.down = False
        summary = ReconciliationJob(primary, graph).run()

        assert summary.markers_cleared == 1
        assert summary.deferrals_resolved == 1
        assert primary.find_by_key("policies", "P1").sync_error is False
        assert primary.list_deferrals() == []
        assert len(primary.list_deferrals(include_resolved=True)) == 1
        assert graph.has_edge("Customer", "1", "HAS", "Policy", "P1")

    def test_orphan_deferral_stays_open(self, primary, graph, legacy_records):
        primary.insert("claims", {"claim_id": 1001, "policy_number": "NOPE", "type": "Robo"})
        primary.record_deferral("claims", 1001, "create_claim", "graph store unavailable")
        primary.record_deferral("policies", "P1", "create_policy", "graph store unavailable")

        summary = ReconciliationJob(primary, graph).run()

        assert summary.deferrals_resolved == 1
        assert [(d.collection, d.entity_key) for d in primary.list_deferrals()] == [("claims", "1001")]

    def test_one_policy_node_per_number(self, coordinator, primary, graph, policy_p1):
        with pytest.raises(ConflictError):
            coordinator.create_policy({
                "policy_number": "P1", "customer_id": 1, "agent_id": 5, "type": "Auto",
                "start_date": "2025-01-01", "end_date": "2025-12-31",
            })
        ReconciliationJob(primary, graph).run()
        assert graph.count_nodes("Policy") == 1

    def test_live_write_and_reconcile_agree(self, coordinator, primary, graph, policy_p1):
        claim = coordinator.create_claim({"policy_number": "P1", "type": "Robo"}).record
        before = graph.node("Claim", str(claim.id))

        ReconciliationJob(primary, graph).run()

        assert graph.node("Claim", str(claim.id)) == before
        assert graph.count_nodes("Claim") == 1


class TestSeedData:

    def test_seed_then_reconcile(self, engine, graph):
        with Session(engine) as session:
            assert load_seed_data(session) == 13
            assert load_seed_data(session) == 0

            primary = PrimaryStore(session)
            policy = primary.find_by_key("policies", "POL1001")
            assert policy.start_date == date(2025, 3, 1)
            assert primary.find_by_key("customers", 3).active is False
            assert primary.find_by_key("vehicles", "AC789HI").insured is False
            assert primary.find_by_key("vehicles", "AB123CD").insured is True

            summary = ReconciliationJob(primary, graph).run()
            assert summary.claims == 2
            assert summary.skipped == 0

            claim = SyncCoordinator(primary, graph).create_claim({"policy_number": "POL1001", "type": "Robo"})
            assert claim.record.claim_id == 1003


def test_batched():
    assert list(batched(range(5), 2)) == [[0, 1], [2, 3], [4]]
    assert list(batched([], 3)) == []




class TestCommandLine:
    """policygraph-reconcile entry point."""

    @pytest.fixture
    def cli(self, engine, graph, monkeypatch):
        monkeypatch.setattr(reconcile_cli, "engine", engine)
        monkeypatch.setattr(reconcile_cli, "create_db_and_tables", lambda: None)
        monkeypatch.setattr(reconcile_cli, "get_graph_store", lambda: graph)
        monkeypatch.setattr(reconcile_cli, "close_graph_store", lambda: None)
        return reconcile_cli

    def test_runs_job(self, cli, engine, graph, capsys):
        with Session(engine) as session:
            PrimaryStore(session).insert("agents", {"agent_id": 5})

        assert cli.main(["--batch-size", "10"]) == 0
        assert "processed=1 skipped=0" in capsys.readouterr().out
        assert graph.node("Agent", "5") == {"active": True}

    def test_graph_unreachable(self, cli, graph):
        graph.down = True
        assert cli.main([]) == 1

    def test_primary_failure(self, cli, monkeypatch):
        def broken(*args, **kwargs):
            raise OperationalError("SELECT 1", {}, Exception("disk I/O error"))

        monkeypatch.setattr(Session, "exec", broken)
        assert cli.main([]) == 1
