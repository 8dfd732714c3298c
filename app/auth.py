from dataclasses import dataclass
from enum import Enum

from fastapi import HTTPException, Request, status

from app.services.errors import Forbidden, Unauthorized


class Role(str, Enum):
    ADMIN = "admin"
    WAREHOUSE = "warehouse"
    FIELD = "field"


MUTATING_ROLES = frozenset({Role.ADMIN, Role.WAREHOUSE})


@dataclass(frozen=True)
class Principal:
    id: int
    username: str
    full_name: str
    role: Role
    active: bool = True


def get_current_principal(request: Request) -> Principal:
    principal = getattr(request.state, "principal", None)
    if not principal:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    if not principal.active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    return principal


def ensure_can_mutate(principal: Principal | None, *, action: str) -> Principal:
    if principal is None or not principal.active:
        raise Unauthorized("Authentication required")
    if principal.role not in MUTATING_ROLES:
        raise Forbidden(f"Field users cannot {action}")
    return principal
