"""
Canonical workflow types (``lending_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for lifecycle state machines.  Offers, applications
and loans all declare their lifecycle as a ``Workflow`` over a closed
``Enum`` of states, and every state change goes through
``Workflow.apply``.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* ``states`` covers every member of the state enum.
* Terminal states have no outgoing transitions.
* At most one transition per (from_state, action) pair.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

from lending_kernel.exceptions import IllegalStateTransitionError

S = TypeVar("S", bound=Enum)


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Contract: frozen, descriptive only.
    Non-goals: does not evaluate the condition -- the owning service does,
    before it calls ``Workflow.apply``.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition(Generic[S]):
    """A valid state transition in a workflow."""
    from_state: S
    to_state: S
    action: str
    guard: Guard | None = None


@dataclass(frozen=True)
class Workflow(Generic[S]):
    """A state machine definition for an entity lifecycle.

    Contract: frozen; ``transitions`` reference only states in ``states``.
    Guarantees: ``initial_state`` is a member of ``states``; every member
    of the state enum is declared.
    """
    name: str
    description: str
    state_type: type[S]
    initial_state: S
    states: tuple[S, ...]
    transitions: tuple[Transition[S], ...]
    terminal_states: tuple[S, ...] = ()

    def __post_init__(self) -> None:
        declared = set(self.states)
        missing = set(self.state_type) - declared
        if missing:
            raise ValueError(
                f"Workflow {self.name} does not declare states: "
                f"{sorted(m.value for m in missing)}"
            )
        if self.initial_state not in declared:
            raise ValueError(f"Workflow {self.name}: initial state not in states")
        seen: set[tuple[S, str]] = set()
        for t in self.transitions:
            if t.from_state not in declared or t.to_state not in declared:
                raise ValueError(
                    f"Workflow {self.name}: transition {t.action} references unknown state"
                )
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"Workflow {self.name}: terminal state {t.from_state.value} "
                    f"has outgoing transition {t.action}"
                )
            key = (t.from_state, t.action)
            if key in seen:
                raise ValueError(
                    f"Workflow {self.name}: duplicate transition "
                    f"{t.action} from {t.from_state.value}"
                )
            seen.add(key)

    def find(self, current: S, action: str) -> Transition[S] | None:
        for t in self.transitions:
            if t.from_state == current and t.action == action:
                return t
        return None

    def can(self, current: S, action: str) -> bool:
        return self.find(current, action) is not None

    def actions_from(self, current: S) -> tuple[str, ...]:
        return tuple(t.action for t in self.transitions if t.from_state == current)

    def is_terminal(self, state: S) -> bool:
        return state in self.terminal_states

    def apply(self, current: S, action: str, entity_id: str = "") -> S:
        """
        Target state of ``action`` from ``current``.

        Raises:
            IllegalStateTransitionError: no such transition is declared.
        """
        transition = self.find(current, action)
        if transition is None:
            raise IllegalStateTransitionError(
                entity_type=self.name,
                entity_id=entity_id,
                current_state=current.value,
                action=action,
            )
        return transition.to_state
