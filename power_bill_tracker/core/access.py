"""
Actor identity and role gate.

Identity and role storage live outside the core; the core only asks a
role provider for the actor's role and refuses admin-only work without it.
"""

from dataclasses import dataclass
from typing import Optional, Protocol

from .errors import Unauthorized


@dataclass(frozen=True)
class Actor:
    """The authenticated user performing an operation."""
    id: str
    email: str


class RoleProvider(Protocol):
    def role_of(self, actor: Optional[Actor]) -> Optional[str]:
        ...


def require_role(provider: RoleProvider, actor: Optional[Actor], role: str) -> str:
    """Check the actor holds `role`.

    Returns:
        The actor's role

    Raises:
        Unauthorized: If there is no actor, the actor isn't whitelisted,
            or holds a different role
    """
    if actor is None:
        raise Unauthorized("Not signed in")
    actual = provider.role_of(actor)
    if actual is None:
        raise Unauthorized(f"{actor.email} is not whitelisted")
    if actual != role:
        raise Unauthorized(f"{actor.email} needs the '{role}' role for this operation")
    return actual
