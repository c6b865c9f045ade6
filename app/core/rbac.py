from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Optional, Set

from fastapi import HTTPException, status


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    INVENTORY_MANAGER = "INVENTORY_MANAGER"
    PHARMACIST = "PHARMACIST"
    CASHIER = "CASHIER"
    CLINICAL_OFFICER = "CLINICAL_OFFICER"
    LAB_TECHNICIAN = "LAB_TECHNICIAN"


@dataclass(frozen=True)
class CurrentUser:
    """Caller identity resolved from the bearer token claims."""

    id: int
    role: UserRole
    name: str = ""


def _code(x: Any) -> str:
    """
    Normalize a role code safely.
    Supports:
      - Enum -> enum.value
      - str  -> str
      - object with .role -> str/Enum
    """
    if x is None:
        return ""

    if isinstance(x, Enum):
        return str(x.value)

    if isinstance(x, str):
        return x

    if hasattr(x, "role"):
        return _code(getattr(x, "role"))

    return str(x)


def is_admin_user(user: Any) -> bool:
    if not user:
        return False
    return _code(user).upper() == UserRole.ADMIN.value


def user_role_codes(user: Any) -> Set[str]:
    c = _code(user).strip().upper()
    return {c} if c else set()


def require_any(user: Any, required: Iterable[Any], *, message: Optional[str] = None) -> None:
    """
    Raise 403 if the user's role is not one of 'required'.
    ADMIN passes every check.
    """
    if is_admin_user(user):
        return

    required_set = {_code(x).strip().upper() for x in required if _code(x).strip()}
    if not required_set:
        return

    if user_role_codes(user).intersection(required_set):
        return

    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail=message or "You do not have permission to perform this action.",
    )
