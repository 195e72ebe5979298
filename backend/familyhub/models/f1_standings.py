from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from familyhub.core.db import Base
from familyhub.utils.timezone import utcnow


class F1ChampionshipState(Base):
    """Last announced drivers' championship leader per season."""

    __tablename__ = "f1_championship_state"

    season: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    leader_id: Mapped[str] = mapped_column(String(64), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
