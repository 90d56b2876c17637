"""StaticPrincipal model with a fixed permission set."""

from pydantic import BaseModel, ConfigDict, Field

from crudworkflow.domain.models.transition_record import EntityRef


class StaticPrincipal(BaseModel):
    """Principal whose permissions are known up front.

    Satisfies the Principal protocol. Useful for service accounts, for
    request layers that resolve permissions before calling the engine, and
    for tests.

    Example:
        ```python
        reviewer = StaticPrincipal(identifier="u-42", permissions={"order.approve"})
        reviewer.has_permission("order.approve", ref)  # True
        ```
    """

    identifier: str = Field(
        ...,
        description="Stable principal identifier",
        min_length=1,
    )
    permissions: frozenset[str] = Field(
        default_factory=frozenset,
        description="Granted permission names",
    )
    is_superuser: bool = Field(
        default=False,
        description="Superusers pass every authorization check",
    )

    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
    )

    def has_permission(self, permission: str, entity: EntityRef) -> bool:
        """Return True if permission was granted (entity is not consulted)."""
        return self.is_superuser or permission in self.permissions
