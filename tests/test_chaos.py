"""Tests for fault injection and the chaos runner."""

from unittest import mock

import pytest

from chaos.chaos_config import ChaosConfig
from chaos.chaos_proxy import ChaosProxy
from chaos.chaos_runner import run_chaos, run_tables
from chaos.exceptions.chaos_exception import ChaosException
from isolation_engine.config import IsolationConfig
from isolation_engine.transaction_context import TransactionContext


@pytest.fixture
def txn(store):
    return TransactionContext("chaos-txn", store)


class TestChaosConfig:
    """Tests for failure and delay injection."""

    def test_disabled_never_fails(self):
        chaos = ChaosConfig(enabled=False, failure_rate=1.0)

        for _ in range(20):
            chaos.maybe_fail("insert")

        assert chaos.total_operations == 20
        assert chaos.failures_injected == 0

    def test_certain_failure_raises_and_counts(self):
        chaos = ChaosConfig(enabled=True, failure_rate=1.0)

        with pytest.raises(ChaosException, match="during update"):
            chaos.maybe_fail("update")

        metrics = chaos.get_metrics()
        assert metrics["Summary"]["failures_injected"] == 1
        assert metrics["Failures by Context"] == {"update": 1}

    def test_delay_sleeps_within_bound(self):
        chaos = ChaosConfig(enabled=True, delay_chance=1.0, max_delay=0.01)

        with mock.patch("chaos.chaos_config.time.sleep") as sleep:
            chaos.maybe_delay("select")

        delay = sleep.call_args[0][0]
        assert 0 <= delay <= 0.01
        assert chaos.delays_by_context["select"] == 1

    def test_seeded_configs_agree(self):
        """Test that the same seed gives the same fault sequence."""

        def sequence(seed):
            chaos = ChaosConfig(enabled=True, failure_rate=0.5, seed=seed)
            outcome = []
            for _ in range(30):
                try:
                    chaos.maybe_fail("insert")
                    outcome.append(False)
                except ChaosException:
                    outcome.append(True)
            return outcome

        assert sequence(7) == sequence(7)

    def test_format_metrics(self):
        text = ChaosConfig().format_metrics()

        assert "=== Chaos Metrics Summary ===" in text
        assert "No failures recorded." in text
        assert "No delays recorded." in text


class TestChaosProxy:
    """Tests for the proxy around a transaction."""

    def test_failure_happens_before_mutation(self, txn, store):
        """Test that an injected failure leaves no applied or logged mutation."""
        proxy = ChaosProxy(txn, ChaosConfig(enabled=True, failure_rate=1.0))

        with pytest.raises(ChaosException):
            proxy.insert("inventory", {"id": 1})

        assert store.count("inventory") == 0
        assert txn.forward_log == []

    def test_passthrough_when_disabled(self, txn, store):
        proxy = ChaosProxy(txn, ChaosConfig(enabled=False))

        proxy.insert("inventory", [{"id": 1, "status": "active"}, {"id": 2}])
        proxy.update("inventory", {"quantity": 3}, {"status": "active"})
        proxy.delete("inventory", {"id": 2})

        assert proxy.select("inventory") == [{"id": 1, "status": "active", "quantity": 3}]
        proxy.truncate("inventory")
        assert store.count("inventory") == 0
        assert len(txn.inverse_log) == 4

    def test_reads_never_fail(self, txn):
        proxy = ChaosProxy(txn, ChaosConfig(enabled=True, failure_rate=1.0, delay_chance=0))

        assert proxy.select("inventory") == []


class TestChaosRunner:
    """Tests for many fault-injected bodies running concurrently."""

    def test_run_tables_are_private(self):
        assert run_tables("a") != run_tables("b")

    def test_shared_run_tables_are_common(self):
        assert run_tables("a", shared=True) == run_tables("b", shared=True)

    def test_isolation_holds_under_chaos(self):
        chaos = ChaosConfig(enabled=True, failure_rate=0.3, delay_chance=0.3,
                            max_delay=0.005, seed=11)

        result = run_chaos(runs=20, steps=6, chaos=chaos, seed=11)

        outcomes = result["outcomes"]
        assert result["isolation_held"] is True
        assert outcomes["other_failures"] == 0
        assert outcomes["conflicts"] == 0
        assert outcomes["succeeded"] + outcomes["chaos_failures"] == 20
        assert result["metrics"]["Summary"]["total_operations"] > 0

    def test_undo_log_alone_restores_baseline(self):
        """Test the undo log without the snapshot restore behind it."""
        chaos = ChaosConfig(enabled=True, failure_rate=0.3, delay_chance=0.0, seed=3)
        config = IsolationConfig(trace_heap=False, restore_snapshot_on_rollback=False)

        result = run_chaos(runs=15, steps=8, chaos=chaos, config=config, seed=3)

        assert result["isolation_held"] is True

    @pytest.mark.parametrize(
        "restore_snapshot", [True, False], ids=["with-snapshot", "undo-log-only"]
    )
    @pytest.mark.parametrize("seed", [5, 17])
    def test_isolation_holds_with_shared_tables(self, restore_snapshot, seed):
        """Test interleaved rollbacks on common tables return the store to baseline."""
        chaos = ChaosConfig(enabled=True, failure_rate=0.3, delay_chance=0.5,
                            max_delay=0.005, seed=seed)
        config = IsolationConfig(
            trace_heap=False,
            restore_snapshot_on_rollback=restore_snapshot,
            max_concurrency=4,
        )

        result = run_chaos(
            runs=30, steps=8, chaos=chaos, config=config, seed=seed, shared_tables=True
        )

        outcomes = result["outcomes"]
        assert result["isolation_held"] is True
        assert outcomes["other_failures"] == 0
        assert sum(outcomes.values()) == 30
