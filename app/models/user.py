from typing import Optional
from pydantic import BaseModel
from enum import Enum


class Role(str, Enum):
    ADMIN = "admin"
    PLANTONISTA = "plantonista"


class Identity(BaseModel):
    id: str
    username: str
    email: Optional[str] = None


class Capabilities(BaseModel):
    can_create: bool = True
    can_edit: bool = False
    can_view_dashboard: bool = False
    can_view_analysis: bool = False
    can_export: bool = False

    @classmethod
    def for_role(cls, role: Role) -> "Capabilities":
        if role == Role.ADMIN:
            return cls(
                can_create=True,
                can_edit=True,
                can_view_dashboard=True,
                can_view_analysis=True,
                can_export=True,
            )
        return cls()


class Session(BaseModel):
    """What one authenticated session may do, resolved once at login."""

    identity: Identity
    role: Role
    capabilities: Capabilities
    token_id: Optional[str] = None
