"""Main entry point demonstrating test isolation over the in-memory inventory store."""

import logging
import time

from isolation_engine.config import IsolationConfig
from isolation_engine.diagnostics import collect_diagnostics, format_report
from isolation_engine.environment import IsolationEnvironment
from isolation_engine.scoped import transaction_scope
from isolation_engine.seeder import Seeder

logger = logging.getLogger("main")


def main():
    """Walk through rollback, commit, cleanup and admission control."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    environment = IsolationEnvironment(IsolationConfig(max_concurrency=2))
    store = environment.store
    coordinator = environment.coordinator

    logger.info("=== INVENTORY TEST ISOLATION DEMO ===")

    # Test 1: baseline data outside any transaction
    logger.info("1. Seeding baseline inventory...")
    Seeder(store).seed_minimal_dataset()
    logger.info("Baseline inventory rows: %d", store.count("inventory"))

    # Test 2: a failing test body is rolled back
    logger.info("2. Running a failing test body...")
    try:
        with transaction_scope(coordinator, "restock-fails") as txn:
            txn.insert(
                "inventory",
                [
                    {"id": "MILK-2PCT-1GAL", "name": "2% Milk - 1 Gallon", "quantity": 48},
                    {"id": "BREAD-WHITE-LOAF", "name": "White Bread Loaf", "quantity": 10},
                ],
            )
            txn.update("inventory", {"quantity": 25}, {"id": "BREAD-WHITE-LOAF"})
            raise RuntimeError("simulated assertion failure")
    except RuntimeError as e:
        logger.info("Body failed as expected: %s", e)
    logger.info("Inventory rows after rollback: %d", store.count("inventory"))

    # Test 3: a committed body keeps its data and runs cleanups
    logger.info("3. Running a committed test body...")
    with transaction_scope(coordinator, "add-category", commit=True) as txn:
        coordinator.add_cleanup(
            "add-category", lambda: logger.info("Cleanup ran for add-category")
        )
        txn.insert("categories", {"id": "cat-dairy", "name": "Dairy"})
    logger.info("Categories after commit: %d", store.count("categories"))

    # Test 4: admission control, four 100ms bodies two at a time
    logger.info("4. Admitting four concurrent test bodies (max 2)...")
    start = time.time()
    futures = [
        environment.submit_isolated(
            f"concurrent-{i}",
            lambda txn, i=i: (txn.insert(f"scratch-{i}", {"id": i}), time.sleep(0.1)),
        )
        for i in range(4)
    ]
    for future in futures:
        future.result()
    logger.info("Completed in %.0fms", (time.time() - start) * 1000)

    logger.info("\n%s", format_report(collect_diagnostics(coordinator, environment.controller)))
    environment.close()


if __name__ == "__main__":
    main()
