"""Bin collection reminders.

The evening run announces bins collected tomorrow, the morning run bins
collected today. Collection dates come from the municipal calendar.
"""
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from familyhub.services.reminder_scheduler import (
    DueNotification,
    InvalidRunType,
    ReminderCategory,
    RunContext,
)
from familyhub.utils.timezone import to_local

logger = logging.getLogger(__name__)

RUN_TYPES = ("evening", "morning")


@dataclass(frozen=True)
class BinType:
    id: str
    name: str
    emoji: str
    description: str


BIN_TYPES: list[BinType] = [
    BinType("madaffald", "Madaffald", "🍎", "Food waste"),
    BinType("restaffald", "Restaffald", "🗑️", "General waste"),
    BinType("papir_pap", "Papir & Pap", "📦", "Paper & cardboard"),
    BinType("plast_metal_glas", "Plast, Metal & Glas", "♻️", "Plastic, metal & glass"),
]

# Randers Kommune, DD/MM per bin type
_MONDAYS_2026 = [
    "12/01", "26/01", "09/02", "23/02", "09/03", "23/03", "06/04",
    "20/04", "04/05", "18/05", "01/06", "15/06", "29/06", "13/07",
    "27/07", "10/08", "24/08", "07/09", "21/09", "05/10", "19/10",
    "02/11", "16/11", "30/11", "14/12", "28/12",
]

COLLECTION_SCHEDULE: dict[int, dict[str, list[str]]] = {
    2026: {
        "madaffald": _MONDAYS_2026,
        "restaffald": _MONDAYS_2026,
        "papir_pap": [
            "27/01", "24/02", "24/03", "21/04", "19/05", "16/06", "14/07",
            "11/08", "08/09", "06/10", "03/11", "01/12", "29/12",
        ],
        "plast_metal_glas": [
            "14/01", "04/02", "25/02", "18/03", "08/04", "29/04", "20/05",
            "10/06", "01/07", "22/07", "12/08", "02/09", "23/09", "14/10",
            "04/11", "25/11", "16/12",
        ],
    },
}


def bins_for_date(day: date) -> list[BinType]:
    schedule = COLLECTION_SCHEDULE.get(day.year)
    if schedule is None:
        logger.warning(f"No bin collection schedule for {day.year}")
        return []
    key = day.strftime("%d/%m")
    return [bin_type for bin_type in BIN_TYPES if key in schedule.get(bin_type.id, [])]


def bin_message(bins: list[BinType], run_type: str) -> tuple[str, str]:
    names = " & ".join(b.name for b in bins)
    emojis = " ".join(b.emoji for b in bins)
    if run_type == "evening":
        return f"{emojis} Bin Day Tomorrow!", f"Put out the {names}"
    return f"{emojis} Bin Day Today!", f"Collection today: {names}"


class BinReminders(ReminderCategory):
    name = "bins"
    ledger_category = "bins"
    category_flag = "bins_enabled"
    noun = "bin reminders"

    def resolve_run_type(self, run_type: Optional[str], ctx: RunContext) -> str:
        if run_type is None:
            return "morning" if to_local(ctx.now()).hour < 12 else "evening"
        if run_type not in RUN_TYPES:
            raise InvalidRunType(f"run_type must be one of {', '.join(RUN_TYPES)}")
        return run_type

    async def collect(self, ctx: RunContext) -> list[DueNotification]:
        today = to_local(ctx.now()).date()
        collection_day = today + timedelta(days=1) if ctx.run_type == "evening" else today
        bins = bins_for_date(collection_day)
        if not bins:
            return []

        title, body = bin_message(bins, ctx.run_type)
        return [
            DueNotification(
                reference_id=collection_day.isoformat(),
                notification_type=f"bin_reminder_{ctx.run_type}",
                title=title,
                body=body,
                scope=ctx.run_type,
                flags=(f"bin_reminder_{ctx.run_type}",),
                data={
                    "bins": [b.id for b in bins],
                    "collection_date": collection_day.isoformat(),
                    "deep_link": "/bindicator",
                },
            )
        ]

    def message(self, summary):
        return f"Sent {summary.count} bin reminders ({summary.run_type})"
