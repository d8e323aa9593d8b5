"""
Base class for read-only selectors.

Selectors are the read side used by the operator surface: they accept the
caller's Session, run queries and return frozen DTOs, never ORM instances.
They never add, flush, commit or delete.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """
    Read-only query helper.

    Contract:
        The caller owns the session and its transaction scope.

    Non-goals:
        - No writes of any kind.
    """

    def __init__(self, session: Session):
        self.session = session
