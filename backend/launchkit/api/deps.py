"""Shared API dependencies — single import point for all routers.

Re-exports database session, authentication and quota dependencies so that
router modules can import everything they need from one place::

    from launchkit.api.deps import get_db, get_current_user
"""

from launchkit.auth.dependencies import AuthenticatedUser, get_current_user
from launchkit.billing.dependencies import check_generation_quota, get_quota
from launchkit.database import get_db

__all__ = [
    "AuthenticatedUser",
    "get_db",
    "get_current_user",
    "get_quota",
    "check_generation_quota",
]
