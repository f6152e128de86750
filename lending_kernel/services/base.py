"""
BaseService -- abstract base for all lending kernel services.

Responsibility:
    Provides the common constructor (session, clock, settings) and the
    locked-read and compare-and-set helpers every lifecycle write goes
    through.  Services use ``session.flush()`` -- never
    ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or rollback themselves.  The caller
      (``session_scope`` or a test harness) owns commit/rollback.
    - Versioned writes: ``compare_and_set`` issues
      ``UPDATE ... WHERE id = :id AND version = :expected`` and reports
      whether this transaction won.  A lost race never overwrites.

Failure modes:
    - If a subclass calls ``session.commit()``, multi-step operations
      (match + invoice, originate + offer bookkeeping) lose atomicity.
"""

from __future__ import annotations

from abc import ABC
from enum import Enum
from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from lending_config.schema import LendingSettings
from lending_kernel.db.base import Base
from lending_kernel.domain.clock import Clock, SystemClock
from lending_kernel.domain.workflow import Workflow
from lending_kernel.exceptions import IllegalStateTransitionError
from lending_kernel.logging_config import get_logger

ModelType = TypeVar("ModelType", bound=Base)
S = TypeVar("S", bound=Enum)

logger = get_logger("services.base")

# Actor recorded on rows written by sweeps, seeding and event handlers.
SYSTEM_ACTOR_ID = UUID(int=0)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.
        - ``self.clock`` is the only source of "now".

    Non-goals:
        - Does NOT provide listing queries -- those belong in
          ``lending_kernel/selectors/``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: LendingSettings | None = None,
    ):
        self.session = session
        self.clock = clock or SystemClock()
        self.settings = settings or LendingSettings()

    def lock_row(self, model: type[ModelType], row_id: UUID) -> ModelType | None:
        """
        Re-read a row with SELECT ... FOR UPDATE, refreshing any cached copy.

        On PostgreSQL the row stays locked until the caller's transaction
        ends.  SQLite ignores FOR UPDATE; its transactions are serialized
        at BEGIN instead.
        """
        return self.session.execute(
            select(model)
            .where(model.id == row_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def compare_and_set(
        self,
        row: ModelType,
        expected_version: int,
        **values: Any,
    ) -> bool:
        """
        Write ``values`` only if ``row`` is still at ``expected_version``.

        Returns True when this transaction's write landed (the version is
        bumped and the row refreshed), False when another transaction
        changed the row first.
        """
        model = type(row)
        self.session.flush()
        result = self.session.execute(
            update(model)
            .where(model.id == row.id, model.version == expected_version)
            .values(version=expected_version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.session.expire(row)
            return False
        self.session.refresh(row)
        return True

    def transition(
        self,
        row: ModelType,
        workflow: Workflow[S],
        action: str,
        actor_id: UUID | None = None,
        **values: Any,
    ) -> S:
        """
        Move a locked, versioned row through ``workflow`` by ``action``.

        The target state is computed from the row's current status and
        written together with ``values`` in one compare-and-set.  When the
        write loses a race the row is re-locked and the action re-checked
        against the state the winner left behind.

        Raises:
            IllegalStateTransitionError: the action is not legal from the
                row's (possibly just refreshed) state, or the row kept
                changing under us for ``match_retry_limit`` attempts.
        """
        model = type(row)
        entity_id = str(row.id)
        for attempt in range(self.settings.match_retry_limit):
            current = workflow.state_type(row.status)
            target = workflow.apply(current, action, entity_id)
            written = self.compare_and_set(
                row,
                row.version,
                status=target.value,
                updated_by_id=actor_id or SYSTEM_ACTOR_ID,
                **values,
            )
            if written:
                logger.info(
                    "lifecycle_transition",
                    extra={
                        "workflow": workflow.name,
                        "entity_id": entity_id,
                        "action": action,
                        "from_state": current.value,
                        "to_state": target.value,
                    },
                )
                return target
            logger.warning(
                "lifecycle_transition_conflict",
                extra={
                    "workflow": workflow.name,
                    "entity_id": entity_id,
                    "action": action,
                    "attempt": attempt + 1,
                },
            )
            refreshed = self.lock_row(model, row.id)
            if refreshed is None:
                break
            row = refreshed
        raise IllegalStateTransitionError(
            entity_type=workflow.name,
            entity_id=entity_id,
            current_state=str(getattr(row, "status", "unknown")),
            action=action,
        )
