from dataclasses import dataclass
from uuid import NAMESPACE_DNS, UUID, uuid5

from fastapi import Depends, Header

from planner.config.settings import AuthMode, settings
from planner.v1.core.exceptions import ForbiddenError, UnauthorizedError

OPERATOR_ROLES = frozenset({"admin", "operator"})


def string_to_uuid(text: str) -> UUID:
    """Convert a string to a UUID; non-UUID strings map deterministically via namespace DNS."""
    try:
        return UUID(text)
    except ValueError:
        return uuid5(NAMESPACE_DNS, text)


@dataclass
class Principal:
    """Represents the current authenticated user/context."""

    user_id: str
    roles: list[str]
    email: str | None = None

    @property
    def user_uuid(self) -> UUID:
        """Get the user ID as a UUID for database operations."""
        return string_to_uuid(self.user_id)

    @property
    def is_operator(self) -> bool:
        return any(role in OPERATOR_ROLES for role in self.roles)


async def get_principal(
    x_user_id: str | None = Header(None, alias="X-User-ID"),
    x_roles: str | None = Header(None, alias="X-Roles"),
) -> Principal:
    """
    Dependency injection function to get the current principal.

    Behavior based on AUTH_MODE:
    - none: Returns dev defaults with admin role
    - dev: Trusts identity headers set by the upstream gateway
    """
    if settings.auth_mode == AuthMode.NONE:
        return Principal(user_id=settings.dev_user_id, roles=["admin"])
    elif settings.auth_mode == AuthMode.DEV:
        if not x_user_id:
            raise UnauthorizedError(
                "X-User-ID header is required in dev auth mode",
                details={"auth_mode": settings.auth_mode.value},
            )

        roles = [role.strip() for role in (x_roles or "user").split(",") if role.strip()]
        return Principal(user_id=x_user_id, roles=roles or ["user"])
    else:
        raise ValueError(f"Unknown auth mode: {settings.auth_mode}")


async def require_operator(principal: Principal = Depends(get_principal)) -> Principal:
    """Restrict an endpoint to operator roles."""
    if not principal.is_operator:
        raise ForbiddenError(
            "Operator role required", details={"roles": principal.roles}
        )
    return principal


# Convenience type aliases for dependency injection
PrincipalDep = Depends(get_principal)
OperatorDep = Depends(require_operator)
