"""
Sync router: reconciliation trigger and the deferral queue.
"""

from fastapi import APIRouter, Depends, Query

from policygraph.schemas import DeferralList, DeferralResponse, ReconciliationResponse
from policygraph.deps import get_primary_store, get_reconciliation_job
from policygraph.errors import DependencyUnavailable, GraphStoreError
from policygraph.services.reconcile import ReconciliationJob
from policygraph.store import PrimaryStore

router = APIRouter()


@router.post("/sync/reconcile", response_model=ReconciliationResponse)
def run_reconciliation(job: ReconciliationJob = Depends(get_reconciliation_job)):
    """
    Rebuild the graph projection from the primary store.

    A batch failure stops the run with 503; committed batches stay and the
    run can simply be repeated.
    """
    try:
        summary = job.run()
    except GraphStoreError as e:
        raise DependencyUnavailable("graph_unavailable", f"Reconciliation aborted: {e}")
    return ReconciliationResponse(**summary.to_dict())


@router.get("/sync/deferrals", response_model=DeferralList)
async def list_deferrals(
    include_resolved: bool = Query(False),
    limit: int = Query(100, gt=0, le=1000),
    primary: PrimaryStore = Depends(get_primary_store)
):
    """Derived writes that failed and are waiting for reconciliation."""
    deferrals = primary.list_deferrals(include_resolved=include_resolved, limit=limit)
    return DeferralList(items=[DeferralResponse.model_validate(d) for d in deferrals])
