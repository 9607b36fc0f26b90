"""Error taxonomy for the isolation engine.

Infrastructure failures (protocol violations, duplicate ids, admission
timeouts) derive from ``IsolationError`` so they are never confused with
``AssertionError`` raised by a test body.
"""


class IsolationError(Exception):
    """Base class for all exceptions raised by the isolation engine."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self):
        return f"{type(self).__name__}: {self.message}"


class ProtocolError(IsolationError):
    """An operation was attempted that the transaction protocol forbids."""


class TransactionAlreadyCompleted(ProtocolError):
    """Raised when a terminal transaction is mutated, committed or rolled back."""

    def __init__(self, test_id: str, action: str = "use"):
        super().__init__(f"Cannot {action} transaction {test_id}: already completed")
        self.test_id = test_id
        self.action = action


class DuplicateTransactionError(IsolationError):
    """Raised when a test id already has an open transaction."""

    def __init__(self, test_id: str):
        super().__init__(f"Transaction already active for test: {test_id}")
        self.test_id = test_id


class WriteConflictError(IsolationError):
    """Raised when a transaction writes a row another open transaction already wrote.

    The first writer keeps the row until it commits or rolls back, so every
    inverse it holds still describes the row it will be applied to.
    """

    def __init__(self, test_id: str, holder: str, table: str):
        super().__init__(
            f"Test {test_id} cannot write a row in {table} held by open transaction {holder}"
        )
        self.test_id = test_id
        self.holder = holder
        self.table = table


class CleanupError(IsolationError):
    """Wraps a failure raised by a registered cleanup callback.

    Only ever logged; never propagated to the caller of ``end_transaction``.
    """

    def __init__(self, test_id: str, cause: BaseException):
        super().__init__(f"Cleanup error for test {test_id}: {cause!r}")
        self.test_id = test_id
        self.cause = cause


class AdmissionTimeoutError(IsolationError):
    """Raised to the caller when an admitted task overruns its deadline."""

    def __init__(self, test_id: str, deadline: float):
        super().__init__(f"Test {test_id} exceeded its deadline of {deadline:.3f}s")
        self.test_id = test_id
        self.deadline = deadline


class LeakWarning(ResourceWarning):
    """Advisory warning emitted when memory grows past the leak threshold."""
