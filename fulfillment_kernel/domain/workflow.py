"""
Canonical workflow types (``fulfillment_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for state machines.  The part lifecycle is declared as a
Workflow so that the guided transitions live in one table rather than in
branching code.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Every action leads to exactly one target state.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Contract: frozen, descriptive only.
    Non-goals: does not evaluate the condition -- the lifecycle engine does.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow."""
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None


@dataclass(frozen=True)
class Workflow:
    """A state machine definition.

    Contract: frozen; ``transitions`` reference only states in ``states``.
    Guarantees: ``initial_state`` is a member of ``states``.
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"Workflow {self.name}: initial state {self.initial_state!r} "
                "is not a declared state"
            )
        targets: dict[str, str] = {}
        for t in self.transitions:
            for state in (t.from_state, t.to_state):
                if state not in self.states:
                    raise ValueError(
                        f"Workflow {self.name}: transition {t.action} "
                        f"references unknown state {state!r}"
                    )
            if targets.setdefault(t.action, t.to_state) != t.to_state:
                raise ValueError(
                    f"Workflow {self.name}: action {t.action} has more than "
                    "one target state"
                )

    @property
    def actions(self) -> tuple[str, ...]:
        seen: dict[str, None] = {}
        for t in self.transitions:
            seen.setdefault(t.action)
        return tuple(seen)

    def transitions_for(self, action: str) -> tuple[Transition, ...]:
        return tuple(t for t in self.transitions if t.action == action)

    def allowed_from(self, action: str) -> frozenset[str]:
        return frozenset(t.from_state for t in self.transitions_for(action))

    def target_of(self, action: str) -> str:
        matches = self.transitions_for(action)
        if not matches:
            raise KeyError(f"Workflow {self.name} has no action {action!r}")
        return matches[0].to_state

    def find(self, from_state: str, action: str) -> Transition | None:
        for t in self.transitions_for(action):
            if t.from_state == from_state:
                return t
        return None
