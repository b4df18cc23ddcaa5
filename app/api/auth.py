# backend/app/api/auth.py

from fastapi import APIRouter, HTTPException, Depends, Request, status
from pydantic import BaseModel, EmailStr, Field, model_validator
from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import jwt, JWTError
import logging
import uuid

from app.core.config import settings
from app.core.database import get_db
from app.models.user import Capabilities, Identity, Role, Session
from app.services.identity import IdentityProvider

logger = logging.getLogger(__name__)
router = APIRouter()

# -------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------

def now_utc():
    return datetime.now(timezone.utc)

# JWT config
JWT_ALG = "HS256"


def create_access_token(session: Session) -> tuple[str, datetime]:
    exp = now_utc() + timedelta(minutes=settings.access_token_expire_minutes)
    payload = {
        "sub": session.identity.id,
        "username": session.identity.username,
        "email": session.identity.email,
        "role": session.role.value,
        "capabilities": session.capabilities.model_dump(),
        "jti": session.token_id,
        "exp": exp,
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=JWT_ALG), exp


def decode_access_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[JWT_ALG])
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")


def session_from_payload(payload: dict) -> Session:
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    try:
        role = Role(payload.get("role") or Role.PLANTONISTA.value)
        capabilities = Capabilities(**(payload.get("capabilities") or {}))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    return Session(
        identity=Identity(id=user_id, username=payload.get("username") or "", email=payload.get("email")),
        role=role,
        capabilities=capabilities,
        token_id=payload.get("jti"),
    )


def _extract_bearer_token(authorization: str | None) -> str:
    if not authorization:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing Authorization header")
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid Authorization header")
    return parts[1].strip()

# -------------------------------------------------------------------
# Schemas
# -------------------------------------------------------------------

class LoginIn(BaseModel):
    # the frontend may send username, email, or usernameOrEmail
    username: str | None = None
    email: EmailStr | None = None
    usernameOrEmail: str | None = Field(default=None)
    password: str

    @model_validator(mode="after")
    def validate_identifier(self):
        if not (self.username or self.email or self.usernameOrEmail):
            raise ValueError("Provide username or email")
        return self

    @property
    def identifier(self) -> str:
        return (
            (self.username or "").strip()
            or (self.email.lower().strip() if self.email else "")
            or (self.usernameOrEmail or "").strip()
        )


class TokenOut(BaseModel):
    success: bool = True
    access_token: str
    token_type: str = "bearer"
    token: str
    expires_at: datetime
    user: dict
    capabilities: Capabilities

# -------------------------------------------------------------------
# Dependencies
# -------------------------------------------------------------------

async def get_identity_provider(database=Depends(get_db)) -> IdentityProvider:
    return IdentityProvider(database)


async def session_from_token(token: str, provider: IdentityProvider) -> Session:
    session = session_from_payload(decode_access_token(token))
    if await provider.is_revoked(session.token_id):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Session ended. Please log in again.")
    return session


async def get_current_session(
    request: Request,
    provider: IdentityProvider = Depends(get_identity_provider),
) -> Session:
    """
    Usage:
      @router.get("/me")
      async def me(session: Session = Depends(get_current_session)): ...
    """
    token = _extract_bearer_token(request.headers.get("Authorization"))
    return await session_from_token(token, provider)


def require_capability(name: str):
    if name not in Capabilities.model_fields:
        raise ValueError(f"Unknown capability: {name}")

    async def _check(session: Session = Depends(get_current_session)) -> Session:
        if not getattr(session.capabilities, name):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed for your role")
        return session

    return _check

# -------------------------------------------------------------------
# Routes
# -------------------------------------------------------------------

@router.post("/login", response_model=TokenOut)
async def login(payload: LoginIn, provider: IdentityProvider = Depends(get_identity_provider)):
    session = await provider.open_session(payload.identifier, payload.password, token_id=uuid.uuid4().hex)
    token, exp = create_access_token(session)

    user_out = {
        "id": session.identity.id,
        "username": session.identity.username,
        "email": session.identity.email,
        "role": session.role.value,
    }

    return {
        "success": True,
        "access_token": token,
        "token": token,
        "token_type": "bearer",
        "expires_at": exp,
        "user": user_out,
        "capabilities": session.capabilities,
    }


@router.get("/me")
async def me(session: Session = Depends(get_current_session)):
    return {
        "user": session.identity.model_dump(),
        "role": session.role.value,
        "capabilities": session.capabilities.model_dump(),
    }


@router.post("/logout")
async def logout(
    request: Request,
    provider: IdentityProvider = Depends(get_identity_provider),
):
    token = _extract_bearer_token(request.headers.get("Authorization"))
    payload = decode_access_token(token)
    session = session_from_payload(payload)
    if session.token_id:
        exp = payload.get("exp")
        expires_at: Optional[datetime] = datetime.fromtimestamp(exp, tz=timezone.utc) if exp else None
        await provider.revoke(session.token_id, expires_at=expires_at)
    logger.info(f"Session closed for {session.identity.username}")
    return {"success": True, "message": "Logged out"}
