# backend/app/api/__init__.py

from app.api import auth
from app.api import lots
from app.api import dashboard
from app.api import reports

__all__ = [
    "auth",
    "lots",
    "dashboard",
    "reports",
]
