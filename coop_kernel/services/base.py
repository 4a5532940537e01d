"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for every
    write-side service in the kernel.  All concrete services receive a
    SQLAlchemy ``Session`` and an injected ``Clock``; they use
    ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's transaction
      and never commit.  The caller (coop_services facade via
      ``session_scope()``, or a test harness) owns commit and rollback, so a
      raised error discards every write of the operation.

Failure modes:
    - A service that raised after a failed flush leaves the session needing
      rollback; ``session_scope()`` does that before re-raising.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from coop_kernel.db.base import Base
from coop_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Guarantees:
        - The service never calls ``session.commit()``.
        - ``self.clock`` is the only source of "now".

    Non-goals:
        - Read-only queries belong in ``coop_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        """
        Args:
            session: SQLAlchemy session for database operations.
            clock: Time source; defaults to the system clock.
        """
        self.session = session
        self.clock = clock or SystemClock()
