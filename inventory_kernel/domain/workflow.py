"""
Document lifecycle state machine (``inventory_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects describing the draft / confirmed / cancelled lifecycle
shared by purchase and usage records, plus the one workflow instance both
document types use.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow.

    Contract: frozen.  ``mutates_stock=True`` marks the transition that
    applies document lines to the stock ledger.  A transition whose
    ``to_state`` equals its ``from_state`` is an in-place edit.
    """
    from_state: str
    to_state: str
    action: str
    mutates_stock: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle.

    Contract: frozen; validated at construction.
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"Workflow {self.name}: initial state {self.initial_state!r} "
                f"is not a declared state"
            )
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"Workflow {self.name}: transition {t.action!r} references "
                    f"an undeclared state"
                )
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"Workflow {self.name}: terminal state {t.from_state!r} "
                    f"has outgoing transition {t.action!r}"
                )

    def transition_for(self, current_state: str, action: str) -> Transition | None:
        """Return the transition for ``action`` from ``current_state``, if any."""
        for t in self.transitions:
            if t.from_state == current_state and t.action == action:
                return t
        return None

    def allows(self, current_state: str, action: str) -> bool:
        return self.transition_for(current_state, action) is not None


DOCUMENT_WORKFLOW = Workflow(
    name="inventory_document",
    description="Lifecycle of purchase and usage records",
    initial_state="draft",
    states=("draft", "confirmed", "cancelled"),
    transitions=(
        Transition("draft", "confirmed", "confirm", mutates_stock=True),
        Transition("draft", "cancelled", "cancel"),
        Transition("draft", "draft", "update"),
        Transition("draft", "draft", "delete"),
    ),
    terminal_states=("confirmed", "cancelled"),
)
