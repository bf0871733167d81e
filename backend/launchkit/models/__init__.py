"""SQLAlchemy models for LaunchKit billing.

All models are imported here so that Alembic's autogenerate can discover
them via Base.metadata. If you add a new model, import it in this file.
"""

from launchkit.models.ai_usage import AIUsage
from launchkit.models.subscription import Subscription

__all__ = [
    "AIUsage",
    "Subscription",
]
