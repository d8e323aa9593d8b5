"""
BaseService -- common constructor and session contract for kernel services.

Responsibility:
    Every write service receives a SQLAlchemy ``Session`` from its caller,
    a ``KernelSettings`` value and a ``Clock``, and persists with
    ``session.flush()`` only.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or roll back.  The caller (webhook
      processor, operator service, CLI or test harness) owns the
      transaction, so order creation and refunds stay all-or-nothing.

Failure modes:
    - A subclass that calls ``session.commit()`` breaks the atomicity of
      order creation (order + items + tasks + ledger + audit).
"""

from abc import ABC

from sqlalchemy.orm import Session

from order_kernel.domain.clock import Clock, SystemClock
from order_kernel.settings import KernelSettings


class BaseService(ABC):
    """
    Abstract base class for kernel write services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.

    Non-goals:
        - Read-only queries belong in ``order_kernel/selectors/``.
    """

    def __init__(
        self,
        session: Session,
        settings: KernelSettings,
        clock: Clock | None = None,
    ):
        self.session = session
        self.settings = settings
        self.clock = clock or SystemClock()
