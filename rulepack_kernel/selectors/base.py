"""
Module: rulepack_kernel.selectors.base
Responsibility: Abstract base class for read-only query selectors.  Selectors
    are the read side of the store: structured queries over the rulepack
    tables without mutation capability.
Architecture position: Kernel > Selectors.  May import from db/ and models/.
    MUST NOT import from outer packages.

Invariants enforced:
    - Read-only access: Selectors accept a Session from the caller but MUST NOT
      call session.add(), session.delete(), session.commit(), or session.flush().
    - Session ownership: Selectors do NOT create or manage their own sessions;
      the caller owns the session and its transaction scope.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from rulepack_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only queries,
        and return ORM rows or computed results.  They MUST NOT mutate any data.

    Non-goals:
        - BaseSelector does NOT define any query methods; subclasses implement
          domain-specific queries.
    """

    def __init__(self, session: Session):
        self.session = session
