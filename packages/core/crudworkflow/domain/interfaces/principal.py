"""Principal protocol for the acting identity.

The engine treats principals as opaque beyond a stable identifier and an
authorization check. Any object with these two members can act, so callers
can pass their own user objects without wrapping them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from crudworkflow.domain.models.transition_record import EntityRef


@runtime_checkable
class Principal(Protocol):
    """Protocol for the identity requesting a transition."""

    @property
    def identifier(self) -> str:
        """Stable identifier recorded on audit entries."""
        ...

    def has_permission(self, permission: str, entity: EntityRef) -> bool:
        """Return True if this principal holds permission for entity."""
        ...


__all__ = [
    "Principal",
]
