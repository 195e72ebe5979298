import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from familyhub.core.db import Base


class CalendarEvent(Base):
    __tablename__ = "calendar_events"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    location: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    start_time: Mapped[datetime] = mapped_column(DateTime, index=True, nullable=False)
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    all_day: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # One marker per lead time. Null until that reminder went out.
    reminder_15m_sent: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    reminder_30m_sent: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    reminder_1h_sent: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    reminder_1d_sent: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
