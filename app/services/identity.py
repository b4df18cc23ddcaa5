# backend/app/services/identity.py

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from passlib.context import CryptContext

from app.core.config import settings
from app.core.errors import AuthError
from app.models.user import Capabilities, Identity, Role, Session

logger = logging.getLogger(__name__)

_pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return _pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    if not hashed:
        return False
    return _pwd_context.verify(plain, hashed)


def now_utc():
    return datetime.now(timezone.utc)


class IdentityProvider:
    """
    Credentials live in the users collection; roles live apart in the roles
    collection, matched on e-mail. A user with no role record is a
    plantonista.
    """

    def __init__(self, database: Any):
        self.users = database[settings.USERS_COLLECTION]
        self.roles = database[settings.ROLES_COLLECTION]
        self.revoked = database[settings.REVOKED_TOKENS_COLLECTION]

    async def authenticate(self, identifier: str, secret: str) -> Identity:
        identifier = (identifier or "").strip()
        if not identifier or not secret:
            raise AuthError()

        user = await self.users.find_one({"$or": [{"username": identifier}, {"email": identifier.lower()}]})
        if not user or not verify_password(secret, user.get("hashed_password", "")):
            logger.info(f"Failed login for {identifier}")
            raise AuthError()

        if user.get("is_active") is False:
            raise AuthError("Account inactive")

        return Identity(
            id=str(user["_id"]),
            username=user.get("username") or user.get("email") or identifier,
            email=user.get("email"),
        )

    async def find_role(self, identity: Identity) -> Role:
        if not identity.email:
            return Role.PLANTONISTA
        doc = await self.roles.find_one({"email": identity.email.lower()})
        if doc and doc.get("role") == Role.ADMIN.value:
            return Role.ADMIN
        return Role.PLANTONISTA

    async def open_session(self, identifier: str, secret: str, token_id: Optional[str] = None) -> Session:
        identity = await self.authenticate(identifier, secret)
        role = await self.find_role(identity)
        logger.info(f"Session opened for {identity.username} ({role.value})")
        return Session(
            identity=identity,
            role=role,
            capabilities=Capabilities.for_role(role),
            token_id=token_id,
        )

    async def revoke(self, token_id: str, expires_at: Optional[datetime] = None) -> None:
        await self.revoked.update_one(
            {"_id": token_id},
            {"$set": {"revoked_at": now_utc(), "expires_at": expires_at}},
            upsert=True,
        )

    async def is_revoked(self, token_id: Optional[str]) -> bool:
        if not token_id:
            return False
        return await self.revoked.find_one({"_id": token_id}) is not None
