"""
BaseService -- abstract base for all billing services.

Responsibility:
    Common constructor and session-handling contract.  Services receive a
    SQLAlchemy ``Session`` and persist with ``session.flush()``, never
    ``session.commit()``.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction; the caller (``session_scope()`` or a test fixture) owns
      commit and rollback.
    - Per-item isolation uses savepoints (``session.begin_nested()``), which
      roll back only the failed item.
"""

from abc import ABC

from sqlalchemy.orm import Session

from billing_config import BillingConfig


class BaseService(ABC):
    """
    Abstract base class for services that write.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read-only queries -- those belong in
          ``billing_kernel/selectors/``.
    """

    def __init__(self, session: Session, config: BillingConfig | None = None):
        self.session = session
        self.config = config or BillingConfig()
