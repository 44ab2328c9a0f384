"""
BaseService -- common base for the agency services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every service that writes derived rows.  Concrete services receive a
    SQLAlchemy ``Session`` and persist through ``session.flush()`` --
    never ``session.commit()``.

Architecture position:
    Services -- imperative shell over engines + kernel.
    Every service in ``agency_services/`` that writes rows extends this
    class.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or roll back themselves.  The caller
      (``session_scope()`` or a test harness) owns commit/rollback.

Failure modes:
    - If a subclass commits on its own, a multi-row recompute (all payout
      lines of a month) is no longer atomic.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseService(ABC):
    """
    Abstract base class for the agency services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
    """

    def __init__(self, session: Session):
        """
        Initialize the service.

        Preconditions:
            - ``session`` is a valid, open SQLAlchemy session.

        Args:
            session: SQLAlchemy session for database operations.
        """
        self.session = session
