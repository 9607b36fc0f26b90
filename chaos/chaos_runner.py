"""Runs many fault-injected test bodies concurrently and checks isolation held.

Usage: python -m chaos.chaos_runner
"""

import logging
import random
from typing import Any, Dict, List, Optional

from isolation_engine.config import IsolationConfig
from isolation_engine.environment import IsolationEnvironment
from isolation_engine.exceptions import WriteConflictError
from isolation_engine.seeder import Seeder

from .chaos_config import ChaosConfig
from .chaos_proxy import ChaosProxy
from .exceptions.chaos_exception import ChaosException

logger = logging.getLogger(__name__)

BASE_TABLES = ["inventory", "categories", "locations"]


def run_tables(run_id: str, shared: bool = False) -> List[str]:
    """Tables one run writes: the common tables, or copies private to the run."""
    if shared:
        return list(BASE_TABLES)
    return [f"{table}:{run_id}" for table in BASE_TABLES]


def _chaotic_body(chaos: ChaosConfig, rng: random.Random, steps: int, tables):
    def body(transaction):
        db = ChaosProxy(transaction, chaos)
        for step in range(steps):
            table = rng.choice(tables)
            action = rng.choice(["insert", "update", "delete", "truncate"])

            if action == "insert":
                db.insert(table, {"id": f"chaos-{rng.randint(1, 20)}", "quantity": step})
            elif action == "update":
                db.update(
                    table,
                    {"quantity": rng.randint(0, 100)},
                    {"id": f"chaos-{rng.randint(1, 20)}"},
                )
            elif action == "delete":
                db.delete(table, {"id": f"chaos-{rng.randint(1, 20)}"})
            elif rng.random() < 0.2:
                db.truncate(table)
        return steps

    return body


def run_chaos(
    runs: int = 50,
    steps: int = 6,
    chaos: Optional[ChaosConfig] = None,
    config: Optional[IsolationConfig] = None,
    seed: Optional[int] = None,
    shared_tables: bool = False,
) -> Dict[str, Any]:
    """
    Submit ``runs`` isolated bodies with injected faults, then compare the store
    against its pre-run baseline.

    With ``shared_tables`` every run writes the same tables, so rollbacks
    interleave on shared rows; a run that touches a row another open run
    already wrote fails with WriteConflictError and is counted as a conflict.

    Returns:
        dict: run outcome counts, chaos metrics and whether isolation held
    """
    chaos = chaos or ChaosConfig(enabled=True, failure_rate=0.3, delay_chance=0.4, seed=seed)
    rng = random.Random(seed)

    with IsolationEnvironment(config or IsolationConfig(trace_heap=False)) as environment:
        run_ids = [f"chaos-{index}" for index in range(runs)]
        seeded_tables = set()
        for run_id in run_ids:
            for table in run_tables(run_id, shared_tables):
                if table in seeded_tables:
                    continue
                seeded_tables.add(table)
                environment.store.insert(
                    table,
                    [
                        {"id": f"chaos-{n}", "status": "active", "quantity": n}
                        for n in range(1, 11)
                    ],
                )
        Seeder(environment.store).seed_inventory_items(5)
        baseline = environment.store.capture_state()

        futures = [
            environment.submit_isolated(
                run_id,
                _chaotic_body(
                    chaos,
                    random.Random(rng.random()),
                    steps,
                    run_tables(run_id, shared_tables),
                ),
            )
            for run_id in run_ids
        ]

        outcomes = {
            "succeeded": 0,
            "chaos_failures": 0,
            "conflicts": 0,
            "other_failures": 0,
        }
        for future in futures:
            try:
                future.result()
                outcomes["succeeded"] += 1
            except ChaosException:
                outcomes["chaos_failures"] += 1
            except WriteConflictError:
                outcomes["conflicts"] += 1
            except Exception as exc:
                logger.error("[CHAOS TEST] Unexpected failure: %s", exc)
                outcomes["other_failures"] += 1

        isolation_held = environment.store.capture_state() == baseline
        if not isolation_held:
            logger.error("[CHAOS TEST] Store diverged from its baseline")

    return {
        "outcomes": outcomes,
        "isolation_held": isolation_held,
        "metrics": chaos.get_metrics(),
    }


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    chaos_config = ChaosConfig(enabled=True, failure_rate=0.3, delay_chance=0.4)
    result = run_chaos(runs=100, chaos=chaos_config, shared_tables=True)
    logger.info("[CHAOS TEST] Outcomes: %s", result["outcomes"])
    logger.info("[CHAOS TEST] Isolation held: %s", result["isolation_held"])
    logger.info("\n%s", chaos_config.format_metrics())
