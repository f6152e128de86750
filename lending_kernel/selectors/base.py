"""
Module: lending_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.  Selectors
    form the "Q" side of the kernel, giving structured read access to offers,
    applications and loans without mutation capability.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain/dtos.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only access: selectors accept a Session from the caller but MUST NOT
      call session.add(), session.delete(), session.commit(), or session.flush().
    - DTO return convention: selectors return frozen DTOs, never ORM instances.
    - Session ownership: the caller owns the session and its transaction scope.

Failure modes:
    - Returns None or an empty page when nothing matches (never raises on
      absence of data).
"""

from abc import ABC
from datetime import datetime
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from lending_kernel.db.base import Base
from lending_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only queries,
        and return DTOs.  The clock decides which offers and applications
        read as expired.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()

    def now(self) -> datetime:
        return self.clock.now()
