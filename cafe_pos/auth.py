from dataclasses import dataclass
from enum import Enum

from fastapi import Depends, HTTPException, Request, status


class Role(str, Enum):
    ADMIN = "admin"
    CASHIER = "cashier"


@dataclass
class Principal:
    id: int
    email: str
    full_name: str | None
    role: Role
    active: bool

    @property
    def display_name(self) -> str:
        return self.full_name or self.email.split("@")[0]


def get_current_principal(request: Request) -> Principal:
    principal = getattr(request.state, "principal", None)
    if not principal:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    if not principal.active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    return principal


def require_role(*allowed: Role):
    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
        return principal

    return _dep


admin_access = require_role(Role.ADMIN)
pos_access = require_role(Role.ADMIN, Role.CASHIER)
