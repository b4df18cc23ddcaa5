"""Grant the admin role to an e-mail, optionally creating its login.

Usage:
  export MONGODB_URL="mongodb://localhost:27017"
  python scripts/set_admin_user.py admin@seudominio.com
  python scripts/set_admin_user.py admin@seudominio.com --password 's3cret' --username admin

Idempotent: the role record and the user are upserted by e-mail.
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from datetime import datetime, timezone
from typing import List

from motor.motor_asyncio import AsyncIOMotorClient

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.config import settings
from app.core.database import _get_db_name_from_uri
from app.models.user import Role
from app.services.identity import hash_password


async def set_admin_user(db, email: str, password: str | None = None, username: str | None = None) -> None:
    email = email.strip().lower()
    now = datetime.now(timezone.utc)

    await db[settings.ROLES_COLLECTION].update_one(
        {"email": email},
        {"$set": {"email": email, "role": Role.ADMIN.value, "updated_at": now}},
        upsert=True,
    )
    print(f"Role admin set for {email}")

    if password:
        await db[settings.USERS_COLLECTION].update_one(
            {"email": email},
            {
                "$set": {
                    "email": email,
                    "username": username or email,
                    "hashed_password": hash_password(password),
                    "is_active": True,
                    "updated_at": now,
                },
                "$setOnInsert": {"created_at": now},
            },
            upsert=True,
        )
        print(f"Login credentials saved for {email}")


async def main_async(email: str, password: str | None, username: str | None) -> None:
    uri = settings.get_mongo_uri()
    client = AsyncIOMotorClient(uri)
    try:
        await set_admin_user(client[_get_db_name_from_uri(uri)], email, password, username)
    finally:
        client.close()


def main(argv: List[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("email")
    parser.add_argument("--password")
    parser.add_argument("--username")
    args = parser.parse_args(argv)
    asyncio.run(main_async(args.email, args.password, args.username))


if __name__ == "__main__":
    main()
