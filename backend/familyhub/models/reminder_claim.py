from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from familyhub.core.db import Base


class ReminderClaim(Base):
    """Idempotency marker for due items that have no marker column of their own
    (bin days, F1 sessions, daily chore digests, shopping batches)."""

    __tablename__ = "reminder_claims"

    category: Mapped[str] = mapped_column(String(32), primary_key=True)
    reference_id: Mapped[str] = mapped_column(String, primary_key=True)
    # Lead time or recipient, whatever makes the reference unique per dispatch
    scope: Mapped[str] = mapped_column(String(64), primary_key=True, default="")
    claimed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
