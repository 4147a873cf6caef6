#!/usr/bin/env python3
# Rebuilds the graph projection from the primary store. Safe to run while the API is live.
import argparse
import logging
import sys

from sqlmodel import Session

from policygraph.db import create_db_and_tables, engine
from policygraph.errors import GraphStoreError, SyncError
from policygraph.graphdb import close_graph_store, get_graph_store
from policygraph.services.reconcile import BATCH_SIZE, ReconciliationJob
from policygraph.store import PrimaryStore

logger = logging.getLogger("policygraph.reconcile")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Rebuild the graph projection from the primary store")
    parser.add_argument("--batch-size", type=int, default=BATCH_SIZE, help="records per graph transaction")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    create_db_and_tables()
    graph = get_graph_store()
    if not graph.ping():
        logger.error("Graph store unreachable, aborting")
        return 1
    logger.info("Graph store OK")

    try:
        with Session(engine) as session:
            summary = ReconciliationJob(PrimaryStore(session), graph, args.batch_size).run()
    except (GraphStoreError, SyncError) as e:
        logger.error(f"Reconciliation failed, re-run to complete | error={e}")
        return 1
    finally:
        close_graph_store()

    print(f"processed={summary.processed} skipped={summary.skipped}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
