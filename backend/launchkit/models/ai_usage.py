"""AI generation usage tracking model."""

import uuid
from datetime import datetime

from sqlalchemy import Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from launchkit.database import Base, UUIDPrimaryKeyMixin


class AIUsage(UUIDPrimaryKeyMixin, Base):
    """One row per AI generation, counted against the user's monthly quota."""

    __tablename__ = "ai_usage"

    user_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    task_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    model: Mapped[str] = mapped_column(String(255), nullable=False)
    tokens_input: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    tokens_output: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    cost: Mapped[float] = mapped_column(Numeric(10, 6), default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), index=True)

    def __repr__(self) -> str:
        return f"<AIUsage(id={self.id}, user_id={self.user_id}, model={self.model!r}, cost={self.cost})>"
