"""Unit tests for the TransactionContext undo-log engine."""

import logging
import random

import pytest

from isolation_engine.exceptions import (
    ProtocolError,
    TransactionAlreadyCompleted,
    WriteConflictError,
)
from isolation_engine.models.transaction import (
    Operation,
    OperationType,
    TransactionState,
)
from isolation_engine.transaction_context import TransactionContext


@pytest.fixture
def populated_store(store, inventory_rows):
    """Provide a store pre-populated with inventory rows."""
    store.insert("inventory", inventory_rows)
    store.insert("locations", [{"id": "loc-1", "name": "Aisle 1"}])
    return store


@pytest.fixture
def txn(populated_store):
    """Provide an open transaction over the populated store."""
    return TransactionContext("test-txn", populated_store)


class TestTransactionLifecycle:
    """Tests for the open/committed/rolled-back state machine."""

    def test_new_context_is_open(self, txn):
        """Test initial state of a new context."""
        assert txn.state == TransactionState.OPEN
        assert txn.is_completed is False
        assert txn.forward_log == []
        assert txn.inverse_log == []
        assert txn.started_at > 0

    def test_commit_keeps_changes_and_discards_inverse_log(self, txn, populated_store):
        """Test commit leaves the forward changes in place."""
        txn.insert("inventory", {"id": 4, "quantity": 1})
        before_commit = populated_store.capture_state()

        txn.commit()

        assert txn.state == TransactionState.COMMITTED
        assert txn.inverse_log == []
        assert populated_store.capture_state() == before_commit

    def test_double_commit_raises(self, txn):
        """Test that committing twice fails."""
        txn.commit()
        with pytest.raises(TransactionAlreadyCompleted, match="already completed"):
            txn.commit()

    def test_rollback_after_commit_raises(self, txn):
        """Test that rolling back a committed transaction fails."""
        txn.commit()
        with pytest.raises(ProtocolError):
            txn.rollback()

    def test_double_rollback_raises(self, txn):
        """Test that rolling back twice fails."""
        txn.rollback()
        with pytest.raises(TransactionAlreadyCompleted):
            txn.rollback()

    @pytest.mark.parametrize(
        "mutation",
        [
            lambda t: t.insert("inventory", {"id": 9}),
            lambda t: t.update("inventory", {"quantity": 0}, {"id": 1}),
            lambda t: t.delete("inventory", {"id": 1}),
            lambda t: t.truncate("inventory"),
        ],
    )
    def test_mutation_after_termination_raises(self, txn, populated_store, mutation):
        """Test that no mutation is applied once the context is terminal."""
        txn.rollback()
        before = populated_store.capture_state()

        with pytest.raises(TransactionAlreadyCompleted):
            mutation(txn)

        assert populated_store.capture_state() == before

    def test_record_operation_after_termination_raises(self, txn):
        """Test that appending a log entry after commit fails."""
        txn.commit()
        op = Operation(OperationType.INSERT, "t")
        with pytest.raises(TransactionAlreadyCompleted):
            txn.record_operation(op, op)


class TestInverseConstruction:
    """Tests for the forward-to-inverse mapping."""

    def test_insert_inverse_is_positional_delete(self, txn):
        """Test Insert -> Delete of the inserted rows."""
        txn.insert("inventory", [{"id": 4}, {"id": 5}])

        forward, inverse = txn.forward_log[0], txn.inverse_log[0]
        assert forward.op_type == OperationType.INSERT
        assert inverse.op_type == OperationType.DELETE
        assert inverse.positions == [3, 4]

    def test_update_inverse_restores_pre_images(self, txn):
        """Test Update -> Update with pre-images."""
        txn.update("inventory", {"quantity": 25}, {"id": 2})

        forward, inverse = txn.forward_log[0], txn.inverse_log[0]
        assert forward.op_type == OperationType.UPDATE
        assert forward.original_data[0]["quantity"] == 10
        assert inverse.op_type == OperationType.UPDATE
        assert inverse.rows[0]["quantity"] == 10
        assert inverse.positions == [1]
        assert len(inverse.refs) == 1

    def test_delete_inverse_reinserts_removed_rows(self, txn):
        """Test Delete -> Insert of removed rows at their old positions."""
        txn.delete("inventory", {"id": 2})

        inverse = txn.inverse_log[0]
        assert inverse.op_type == OperationType.INSERT
        assert inverse.rows[0]["id"] == 2
        assert inverse.positions == [1]

    def test_truncate_inverse_reinserts_everything(self, txn, inventory_rows):
        """Test Truncate -> Insert of every prior row."""
        txn.truncate("inventory")

        inverse = txn.inverse_log[0]
        assert inverse.op_type == OperationType.INSERT
        assert inverse.rows == inventory_rows
        assert inverse.positions == [0, 1, 2]

    def test_logs_stay_the_same_length(self, txn):
        """Test that every mutation appends exactly one forward and one inverse."""
        txn.insert("inventory", {"id": 4})
        assert len(txn.forward_log) == len(txn.inverse_log) == 1
        txn.update("inventory", {"quantity": 1}, None)
        assert len(txn.forward_log) == len(txn.inverse_log) == 2
        txn.delete("inventory", {"id": 42})
        assert len(txn.forward_log) == len(txn.inverse_log) == 3
        txn.truncate("locations")
        assert len(txn.forward_log) == len(txn.inverse_log) == 4

    def test_touched_tables(self, txn):
        """Test tables are reported once, in first-touch order."""
        txn.insert("inventory", {"id": 4})
        txn.truncate("locations")
        txn.delete("inventory", {"id": 4})

        assert txn.touched_tables() == ["inventory", "locations"]


class TestRollback:
    """Tests for undo-log replay."""

    def test_rollback_restores_each_kind_of_mutation(self, txn, populated_store):
        """Test rollback across insert, update, delete and truncate."""
        before = populated_store.capture_state()

        txn.insert("inventory", [{"id": 4}, {"id": 5}])
        txn.update("inventory", {"quantity": 0, "flag": True}, None)
        txn.delete("inventory", {"id": 2})
        txn.truncate("locations")
        txn.insert("locations", {"id": "loc-2"})
        txn.rollback()

        assert txn.state == TransactionState.ROLLED_BACK
        assert populated_store.capture_state() == before

    def test_rollback_removes_fields_added_by_patch(self, txn, populated_store):
        """Test that a patch introducing a new field is fully undone."""
        txn.update("inventory", {"discontinued": True}, {"id": 1})
        txn.rollback()

        assert "discontinued" not in populated_store.select("inventory", {"id": 1})[0]

    def test_rollback_is_exact_with_duplicate_ids(self, store):
        """Test position-based inverses when ids collide."""
        store.insert("t", [{"id": 1, "v": "a"}, {"id": 1, "v": "b"}])
        before = store.capture_state()
        txn = TransactionContext("dup", store)

        txn.insert("t", {"id": 1, "v": "c"})
        txn.update("t", {"v": "z"}, {"id": 1})
        txn.delete("t", {"v": "z"})
        txn.rollback()

        assert store.capture_state() == before

    def test_empty_mutations_roll_back_to_nothing(self, txn, populated_store):
        """Test that inverses of mutations that touched no rows leave the table alone."""
        before = populated_store.capture_state()

        txn.insert("inventory", [])
        txn.update("inventory", {"quantity": 0}, {"id": 42})
        txn.delete("inventory", {"id": 42})
        txn.rollback()

        assert populated_store.capture_state() == before

    def test_rollback_runs_lifo(self, txn, populated_store):
        """Test that dependent operations are undone before what they depended on."""
        txn.insert("inventory", {"id": 10, "quantity": 1})
        txn.update("inventory", {"quantity": 2}, {"id": 10})
        txn.update("inventory", {"quantity": 3}, {"id": 10})
        txn.rollback()

        assert populated_store.select("inventory", {"id": 10}) == []

    def test_failed_inverse_is_logged_and_replay_continues(
        self, txn, populated_store, caplog
    ):
        """Test that one broken inverse does not stop the others."""
        txn.insert("inventory", {"id": 4})
        # An inverse with misaligned positions makes the store raise
        txn.record_operation(
            Operation(OperationType.DELETE, "locations"),
            Operation(OperationType.INSERT, "locations", rows=[{"id": "x"}], positions=[0, 1]),
        )
        txn.delete("inventory", {"id": 1})

        with caplog.at_level(logging.ERROR):
            txn.rollback()

        assert "Failed to reverse insert on locations" in caplog.text
        assert [row["id"] for row in populated_store.select("inventory")] == [1, 2, 3]
        assert txn.state == TransactionState.ROLLED_BACK

    def test_select_through_context_sees_uncommitted_changes(self, txn):
        """Test reads inside the transaction observe its own writes."""
        txn.insert("inventory", {"id": 4})
        assert len(txn.select("inventory")) == 4
        assert txn.select("inventory", {"id": 4}) == [{"id": 4}]

    @pytest.mark.parametrize("seed", range(25))
    def test_random_sequences_roll_back_to_deep_equal_state(self, store, seed):
        """Test rollback over random mixes of every mutation kind."""
        rng = random.Random(seed)
        tables = ["inventory", "categories", "locations"]
        for table in tables[:2]:
            store.insert(
                table,
                [{"id": rng.randint(1, 5), "q": rng.randint(0, 9)} for _ in range(4)],
            )
        before = store.capture_state()
        txn = TransactionContext(f"random-{seed}", store)

        for _ in range(rng.randint(1, 15)):
            table = rng.choice(tables)
            action = rng.choice(["insert", "update", "delete", "truncate"])
            if action == "insert":
                txn.insert(
                    table,
                    [{"id": rng.randint(1, 5), "q": rng.randint(0, 9)}
                     for _ in range(rng.randint(1, 3))],
                )
            elif action == "update":
                txn.update(
                    table,
                    {"q": rng.randint(0, 9), f"f{rng.randint(0, 2)}": True},
                    {"id": rng.randint(1, 5)} if rng.random() < 0.8 else None,
                )
            elif action == "delete":
                txn.delete(table, {"id": rng.randint(1, 5)})
            else:
                txn.truncate(table)

        txn.rollback()

        after = store.capture_state()
        for table in tables:
            assert after.get(table, []) == before.get(table, [])


class TestInterleavedTransactions:
    """Tests for two open contexts writing the same table."""

    @pytest.fixture
    def shared_store(self, store):
        """Provide a store holding one small table."""
        store.insert("inventory", [{"id": "base"}, {"id": "x"}])
        return store

    def test_delete_and_insert_roll_back_out_of_start_order(self, shared_store):
        """Test that the first transaction rolling back does not misplace the second's row."""
        before = shared_store.capture_state()
        a = TransactionContext("a", shared_store)
        b = TransactionContext("b", shared_store)

        a.delete("inventory", {"id": "base"})
        b.insert("inventory", {"id": "b1"})
        a.rollback()

        assert [row["id"] for row in shared_store.select("inventory")] == [
            "base",
            "x",
            "b1",
        ]

        b.rollback()

        assert shared_store.capture_state() == before

    def test_both_insert_and_first_ends_first(self, shared_store):
        """Test that each rollback removes only its own inserted row."""
        before = shared_store.capture_state()
        a = TransactionContext("a", shared_store)
        b = TransactionContext("b", shared_store)

        a.insert("inventory", {"id": "a1"})
        b.insert("inventory", {"id": "b1"})
        a.rollback()

        assert [row["id"] for row in shared_store.select("inventory")] == [
            "base",
            "x",
            "b1",
        ]

        b.rollback()

        assert shared_store.capture_state() == before

    @pytest.mark.parametrize("first", ["a", "b"])
    def test_mixed_mutations_roll_back_in_either_order(self, store, first):
        """Test exact restore when interleaved writers end in any order."""
        store.insert("inventory", [{"id": "base"}, {"id": "x"}, {"id": "y"}])
        before = store.capture_state()
        contexts = {
            "a": TransactionContext("a", store),
            "b": TransactionContext("b", store),
        }
        a, b = contexts["a"], contexts["b"]

        a.delete("inventory", {"id": "base"})
        b.insert("inventory", {"id": "b1"})
        a.update("inventory", {"quantity": 1}, {"id": "x"})
        b.delete("inventory", {"id": "y"})
        a.insert("inventory", {"id": "a1"})
        b.update("inventory", {"quantity": 2}, {"id": "b1"})

        contexts[first].rollback()
        contexts["b" if first == "a" else "a"].rollback()

        assert store.capture_state() == before

    def test_other_transaction_committing_is_kept(self, shared_store):
        """Test that rolling back one context leaves another's committed row."""
        a = TransactionContext("a", shared_store)
        b = TransactionContext("b", shared_store)

        a.delete("inventory", {"id": "x"})
        b.insert("inventory", {"id": "b1"})
        b.commit()
        a.rollback()

        assert [row["id"] for row in shared_store.select("inventory")] == [
            "base",
            "x",
            "b1",
        ]

    def test_writes_of_open_transactions_are_visible(self, shared_store):
        """Test that reads see rows another open context has not committed."""
        a = TransactionContext("a", shared_store)
        b = TransactionContext("b", shared_store)

        a.insert("inventory", {"id": "a1"})

        assert b.select("inventory", {"id": "a1"}) == [{"id": "a1"}]


class TestWriteConflicts:
    """Tests for rows held by another open context."""

    @pytest.fixture
    def holder(self, populated_store):
        """Provide an open context that has updated row 2."""
        context = TransactionContext("holder", populated_store)
        context.update("inventory", {"quantity": 0}, {"id": 2})
        return context

    @pytest.mark.parametrize(
        "mutation",
        [
            lambda t: t.update("inventory", {"quantity": 99}, {"id": 2}),
            lambda t: t.delete("inventory", None),
            lambda t: t.truncate("inventory"),
        ],
    )
    def test_conflicting_write_changes_nothing(self, holder, populated_store, mutation):
        """Test that a refused write leaves the store and the log untouched."""
        other = TransactionContext("other", populated_store)
        before = populated_store.capture_state()

        with pytest.raises(WriteConflictError, match="held by open transaction holder"):
            mutation(other)

        assert populated_store.capture_state() == before
        assert other.forward_log == [] and other.inverse_log == []
        assert other.claimed == {}

    def test_rows_not_held_stay_writable(self, holder, populated_store):
        """Test that a claim covers only the rows written."""
        other = TransactionContext("other", populated_store)

        other.update("inventory", {"quantity": 5}, {"id": 3})

        assert populated_store.select("inventory", {"id": 3})[0]["quantity"] == 5

    @pytest.mark.parametrize("end", ["commit", "rollback"])
    def test_rows_are_released_when_holder_ends(self, holder, populated_store, end):
        """Test that a second context can write the row once the first has ended."""
        getattr(holder, end)()
        other = TransactionContext("other", populated_store)

        other.delete("inventory", {"id": 2})

        assert populated_store.select("inventory", {"id": 2}) == []
        assert holder.claimed == {}
