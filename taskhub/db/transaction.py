"""
Bounded, retrying transaction runner for multi-entity lifecycle operations.

Each attempt opens a fresh session and one transaction. Work either commits
as a whole or is rolled back as a whole; a reader never sees half a cascade.

Only transient store conflicts are retried (lock contention, serialization
failures, a lost compare-and-set on the version counter). Every error from
the taskhub taxonomy propagates on the first occurrence.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from taskhub.errors import CascadeCancelledError, TransactionConflictError
from taskhub.settings import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS: tuple[type[Exception], ...] = (OperationalError, StaleDataError)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 5
    base_delay_seconds: float = 0.05
    max_delay_seconds: float = 1.0
    timeout_seconds: float = 10.0
    isolation_level: str | None = "SERIALIZABLE"

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_attempts=settings.tx_max_attempts,
            base_delay_seconds=settings.tx_base_delay_seconds,
            max_delay_seconds=settings.tx_max_delay_seconds,
            timeout_seconds=settings.tx_timeout_seconds,
            isolation_level=settings.tx_isolation_level,
        )

    def delay_for(self, attempt: int) -> float:
        """Exponential backoff: base, 2*base, 4*base ... capped at max_delay."""
        return min(self.max_delay_seconds, self.base_delay_seconds * (2 ** (attempt - 1)))


def run_in_transaction(
    session_factory: sessionmaker[Session],
    work: Callable[[Session], T],
    *,
    policy: RetryPolicy | None = None,
    cancel: threading.Event | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run `work(session)` inside one transaction, retrying transient conflicts.

    `work` must return plain values: ORM instances are expired once the
    session closes.
    """

    policy = policy or RetryPolicy()
    deadline = time.monotonic() + policy.timeout_seconds
    attempt = 0

    while True:
        attempt += 1
        if cancel is not None and cancel.is_set():
            raise CascadeCancelledError("Operation cancelled before the transaction started")

        try:
            with session_factory() as session, session.begin():
                if policy.isolation_level:
                    session.connection(execution_options={"isolation_level": policy.isolation_level})
                return work(session)
        except TRANSIENT_ERRORS as exc:
            if attempt >= policy.max_attempts or time.monotonic() >= deadline:
                logger.warning(
                    "Transaction gave up after attempt=%s error=%s", attempt, type(exc).__name__
                )
                raise TransactionConflictError(
                    f"Transaction could not complete after {attempt} attempt(s): concurrent modification"
                ) from exc

            delay = min(policy.delay_for(attempt), max(0.0, deadline - time.monotonic()))
            logger.info(
                "Transient conflict attempt=%s error=%s; retrying in %.3fs",
                attempt,
                type(exc).__name__,
                delay,
            )
            sleep(delay)
