"""Scoped acquisition helpers that guarantee a transaction is always released."""

import functools
import logging
from contextlib import contextmanager
from typing import Any, Callable, Iterator, TypeVar

from .isolation_coordinator import IsolationCoordinator
from .transaction_context import TransactionContext

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _end_quietly(coordinator: IsolationCoordinator, test_id: str) -> None:
    """Roll back after a body failure without masking the body's error."""
    try:
        coordinator.end_transaction(test_id, rollback=True)
    except Exception:
        logger.exception("Rollback failed for test %s", test_id)


@contextmanager
def transaction_scope(
    coordinator: IsolationCoordinator, test_id: str, commit: bool = False
) -> Iterator[TransactionContext]:
    """
    Open a transaction for the duration of a ``with`` block.

    On normal exit the transaction is committed when ``commit`` is True and
    rolled back otherwise. If the block raises, the transaction is rolled
    back and the block's exception propagates unchanged.
    """
    transaction = coordinator.start_transaction(test_id)
    try:
        yield transaction
    except BaseException:
        _end_quietly(coordinator, test_id)
        raise
    coordinator.end_transaction(test_id, rollback=not commit)


def with_test_transaction(
    coordinator: IsolationCoordinator,
    test_id: str,
    test_fn: Callable[[TransactionContext], T],
) -> T:
    """Run ``test_fn`` in a transaction: commit on success, roll back on error."""
    with transaction_scope(coordinator, test_id, commit=True) as transaction:
        return test_fn(transaction)


def with_test_isolation(
    coordinator: IsolationCoordinator,
    test_id: str,
    test_fn: Callable[[], T],
) -> T:
    """Run ``test_fn`` and always roll back afterwards."""
    with transaction_scope(coordinator, test_id, commit=False):
        return test_fn()


def isolated(coordinator: IsolationCoordinator, test_id: str) -> Callable:
    """Decorator form of :func:`with_test_isolation`."""

    def decorator(fn: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            return with_test_isolation(coordinator, test_id, lambda: fn(*args, **kwargs))

        return wrapper

    return decorator
