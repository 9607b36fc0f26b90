"""Read-only health reporting and store-state assertions."""

import json
import time
from dataclasses import asdict
from typing import Dict, Any, List, Optional

from .admission_controller import ConcurrencyAdmissionController
from .config import MIB
from .isolation_coordinator import IsolationCoordinator
from .memory import sample_memory
from .table_store import TableStore


def collect_diagnostics(
    coordinator: IsolationCoordinator,
    controller: Optional[ConcurrencyAdmissionController] = None,
) -> Dict[str, Any]:
    """Aggregate state for test-run health reporting."""
    current = sample_memory("diagnostics")
    latest = coordinator.latest_memory_sample()

    return {
        "memory": {
            "heap_used_mb": round(current.heap_used / MIB),
            "rss_mb": round(current.rss / MIB),
        },
        "active_transactions": coordinator.active_transaction_count(),
        "admission": asdict(controller.get_stats()) if controller else None,
        "latest_memory_sample": asdict(latest) if latest else None,
        "tables": {
            table: coordinator.store.count(table)
            for table in coordinator.store.table_names()
        },
        "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
    }


def format_report(report: Dict[str, Any]) -> str:
    lines = [
        "=== TEST ENVIRONMENT STATUS ===",
        f"Active transactions: {report['active_transactions']}",
    ]
    admission = report.get("admission")
    if admission:
        lines.append(
            f"Admission: {admission['running']} running, {admission['queued']} queued "
            f"(max {admission['max_concurrency']})"
        )
    lines.append(
        f"Memory: heap {report['memory']['heap_used_mb']}MB, "
        f"RSS {report['memory']['rss_mb']}MB"
    )
    lines.append(f"Tables: {report['tables']}")
    lines.append("===============================")
    return "\n".join(lines)


def assert_database_state(
    store: TableStore, expected: Dict[str, List[Dict[str, Any]]]
) -> None:
    """Fail if any listed table differs from the expected rows."""
    for table, expected_rows in expected.items():
        actual_rows = store.select(table)
        if actual_rows != expected_rows:
            raise AssertionError(
                f"Database state mismatch for table {table}:\n"
                f"Expected: {json.dumps(expected_rows, indent=2, default=str)}\n"
                f"Actual: {json.dumps(actual_rows, indent=2, default=str)}"
            )


def assert_table_empty(store: TableStore, table: str) -> None:
    count = store.count(table)
    if count > 0:
        raise AssertionError(
            f"Expected table {table} to be empty, but found {count} records"
        )


def assert_table_has_records(store: TableStore, table: str, expected_count: int) -> None:
    count = store.count(table)
    if count != expected_count:
        raise AssertionError(
            f"Expected table {table} to have {expected_count} records, but found {count}"
        )
