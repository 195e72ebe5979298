import enum
import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from familyhub.core.db import Base
from familyhub.utils.timezone import utcnow


class NotificationStatus(str, enum.Enum):
    SENT = "sent"
    FAILED = "failed"
    READ = "read"
    DISMISSED = "dismissed"


class NotificationLogEntry(Base):
    __tablename__ = "notification_log"
    __table_args__ = (
        Index("ix_notification_log_dedupe", "user_id", "category", "notification_type", "reference_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[Optional[str]] = mapped_column(String, index=True, nullable=True)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    notification_type: Mapped[str] = mapped_column(String(64), nullable=False)
    reference_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    title: Mapped[str] = mapped_column(Text, nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default=NotificationStatus.SENT.value)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True, nullable=False)
