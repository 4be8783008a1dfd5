from enum import Enum
from typing import Optional
from pydantic import BaseModel


class Role(str, Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"
    VIEWER = "VIEWER"


# Highest privilege first; index is the role's rank
ROLE_ORDER: list["Role"] = [
    Role.OWNER,
    Role.ADMIN,
    Role.MEMBER,
    Role.VIEWER,
]


def role_rank(role: "Role | str") -> int:
    """Rank of a role, 0 for OWNER. Lower rank means more privilege."""
    return ROLE_ORDER.index(Role(role))


class ErrorDetail(BaseModel):
    code: str
    message: str
    status: int
    field_errors: Optional[dict[str, list[str]]] = None


class ErrorResponse(BaseModel):
    error: ErrorDetail
