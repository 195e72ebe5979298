"""Formula 1 results, favorite-driver achievements and championship lead changes.

Results are spoilers, so owners in spoiler-free mode get none of these. The
drivers' championship leader is tracked per season in
``f1_championship_state``; the first run of a season only records a
baseline.
"""
import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError

from familyhub.models.f1_standings import F1ChampionshipState
from familyhub.models.notification_preferences import NotificationPreferences
from familyhub.services import device_registry
from familyhub.services.f1_feeds import DriverResult, SessionResults
from familyhub.services.preferences import load_preferences
from familyhub.services.reminder_scheduler import DueNotification, ReminderCategory, RunContext

logger = logging.getLogger(__name__)

# Results of older sessions are not news anymore
RESULTS_FRESH_FOR = timedelta(days=3)
LEADER_CHANGE = "f1_championship_change"

RESULT_INFO: dict[str, tuple[str, str, str]] = {
    "race": ("🏁", "RACE RESULT", "f1_race_results"),
    "qualifying": ("⏱️", "QUALIFYING RESULT", "f1_quali_results"),
    "sprint": ("⚡", "SPRINT RESULT", "f1_sprint_results"),
}

MEDALS = ("🥇", "🥈", "🥉")

TEAM_COLORS = {
    "red_bull": "🔵", "ferrari": "🔴", "mercedes": "⚫", "mclaren": "🟠",
    "aston_martin": "🟢", "alpine": "🔵", "williams": "🔵", "haas": "⚪",
    "sauber": "🟢", "rb": "🔵",
}


def team_emoji(constructor_id: str) -> str:
    return TEAM_COLORS.get(constructor_id.lower(), "🏎️")


def results_message(session: SessionResults) -> tuple[str, str]:
    emoji, label, _ = RESULT_INFO[session.kind]
    lines = [
        f"{medal} {driver.display_name} {team_emoji(driver.constructor_id)}"
        for medal, driver in zip(MEDALS, session.results)
    ]
    return f"{emoji} {label}: {session.race_name}", "\n".join(lines)


def achievement(session: SessionResults, driver: DriverResult) -> Optional[tuple[str, str]]:
    """(notification type, preference flag) for a favorite's result, if it is worth a push."""
    if session.kind == "qualifying":
        return ("f1_favorite_pole", "f1_favorite_pole") if driver.position == 1 else None
    if session.kind != "race":
        return None
    if driver.position == 1:
        return "f1_favorite_win", "f1_favorite_win"
    if driver.position <= 3:
        return "f1_favorite_podium", "f1_favorite_podium"
    return None


def achievement_message(notification_type: str, session: SessionResults, driver: DriverResult) -> tuple[str, str]:
    name = driver.family_name.upper()
    team = team_emoji(driver.constructor_id)
    if notification_type == "f1_favorite_win":
        return f"🏆 {name} WINS!", f"{team} {driver.display_name} wins the {session.race_name}"
    if notification_type == "f1_favorite_pole":
        return f"⏱️ {name} ON POLE!", f"{team} {driver.display_name} starts P1 at the {session.race_name}"
    return f"🍾 {name} P{driver.position}!", f"{team} {driver.display_name} on the podium at the {session.race_name}"


def leader_message(leader: DriverResult, second: DriverResult) -> tuple[str, str]:
    gap = leader.points - second.points
    return (
        "👑 NEW CHAMPIONSHIP LEADER",
        f"{team_emoji(leader.constructor_id)} {leader.display_name} takes the lead!\n"
        f"📊 {leader.points:g} pts (+{gap:g} over {second.family_name})",
    )


def favorite_leading_message(leader: DriverResult, second: DriverResult) -> tuple[str, str]:
    gap = leader.points - second.points
    return (
        f"🏆 {leader.family_name.upper()} LEADS THE CHAMPIONSHIP!",
        f"{team_emoji(leader.constructor_id)} {leader.display_name}\n"
        f"📊 {leader.points:g} points (+{gap:g} gap)\n"
        f"🏆 {leader.wins} wins this season",
    )


class F1ResultsNotifications(ReminderCategory):
    name = "f1_results"
    ledger_category = "f1"
    category_flag = "f1_enabled"
    noun = "F1 results notifications"

    def allows(self, owner_id: str, prefs: NotificationPreferences, item: DueNotification) -> bool:
        if prefs.f1_spoiler_free:
            return False
        return super().allows(owner_id, prefs, item)

    async def collect(self, ctx: RunContext) -> list[DueNotification]:
        if ctx.feeds is None:
            return []

        owners = await device_registry.owners_with_tokens(ctx.session)
        prefs_by_owner = await load_preferences(ctx.session, owners)
        fans = {
            owner_id: prefs.f1_favorite_driver
            for owner_id, prefs in prefs_by_owner.items()
            if prefs.f1_favorite_driver and prefs.allows("f1_enabled") and not prefs.f1_spoiler_free
        }

        due = []
        for kind in RESULT_INFO:
            latest = await ctx.feeds.get_latest_results(kind)
            if not latest.available:
                logger.warning(f"F1 {kind} results unavailable this run")
                continue
            for session in latest.items:
                if self._is_fresh(ctx, session):
                    due.extend(self._session_items(session, fans))

        standings = await ctx.feeds.get_driver_standings()
        if standings.available and len(standings.items) >= 2:
            due.extend(await self._standings_items(ctx, standings.items, fans))
        return due

    @staticmethod
    def _is_fresh(ctx: RunContext, session: SessionResults) -> bool:
        if not session.results or session.session_start is None:
            return False
        return timedelta(0) <= ctx.now() - session.session_start <= RESULTS_FRESH_FOR

    def _session_items(self, session: SessionResults, fans: dict[str, str]) -> list[DueNotification]:
        title, body = results_message(session)
        items = [
            DueNotification(
                reference_id=session.reference_id,
                notification_type=f"f1_{session.kind}_results",
                title=title,
                body=body,
                flags=(RESULT_INFO[session.kind][2],),
                data={
                    "season": session.season,
                    "round": session.round,
                    "winner": session.winner.driver_id,
                    "deep_link": "/f1?tab=results",
                },
            )
        ]

        for owner_id, favorite in fans.items():
            driver = next((d for d in session.results if d.matches(favorite)), None)
            found = achievement(session, driver) if driver else None
            if found is None:
                continue
            notification_type, flag = found
            title, body = achievement_message(notification_type, session, driver)
            items.append(
                DueNotification(
                    reference_id=session.reference_id,
                    notification_type=notification_type,
                    title=title,
                    body=body,
                    recipients=[owner_id],
                    scope=owner_id,
                    flags=(flag,),
                    data={"driver_id": driver.driver_id, "position": driver.position, "deep_link": "/f1?tab=results"},
                )
            )
        return items

    async def _standings_items(
        self, ctx: RunContext, standings: list[DriverResult], fans: dict[str, str]
    ) -> list[DueNotification]:
        leader, second = standings[0], standings[1]
        season = ctx.now().year
        previous = await self._recorded_leader(ctx, season, leader.driver_id)
        if previous is None or previous == leader.driver_id:
            return []

        title, body = leader_message(leader, second)
        items = [
            DueNotification(
                reference_id=f"{season}:leader",
                notification_type=LEADER_CHANGE,
                title=title,
                body=body,
                scope=leader.driver_id,
                flags=("f1_championship_updates",),
                data={
                    "season": season,
                    "new_leader": leader.driver_id,
                    "previous_leader": previous,
                    "deep_link": "/f1?tab=drivers",
                },
            )
        ]

        title, body = favorite_leading_message(leader, second)
        for owner_id, favorite in fans.items():
            if not leader.matches(favorite):
                continue
            items.append(
                DueNotification(
                    reference_id=f"{season}:{previous}>{leader.driver_id}",
                    notification_type="f1_favorite_leading",
                    title=title,
                    body=body,
                    recipients=[owner_id],
                    scope=owner_id,
                    flags=("f1_favorite_win",),
                    data={"driver_id": leader.driver_id, "deep_link": "/f1?tab=drivers"},
                )
            )
        return items

    async def _recorded_leader(self, ctx: RunContext, season: int, leader_id: str) -> Optional[str]:
        """The leader last announced for ``season``; records ``leader_id`` as the baseline when there is none."""
        recorded = await ctx.session.scalar(
            select(F1ChampionshipState.leader_id).where(F1ChampionshipState.season == season)
        )
        if recorded is not None:
            return recorded

        try:
            async with ctx.session.begin_nested():
                await ctx.session.execute(
                    insert(F1ChampionshipState).values(season=season, leader_id=leader_id, updated_at=ctx.now())
                )
        except IntegrityError:
            # A concurrent run recorded it first
            return await ctx.session.scalar(
                select(F1ChampionshipState.leader_id).where(F1ChampionshipState.season == season)
            )
        await ctx.session.commit()
        logger.info(f"Recorded {leader_id} as the {season} championship leader baseline")
        return None

    async def _move_leader(self, ctx: RunContext, item: DueNotification, old: str, new: str) -> bool:
        result = await ctx.session.execute(
            update(F1ChampionshipState)
            .where(F1ChampionshipState.season == item.data["season"], F1ChampionshipState.leader_id == old)
            .values(leader_id=new, updated_at=ctx.now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def claim(self, ctx: RunContext, item: DueNotification) -> bool:
        if item.notification_type != LEADER_CHANGE:
            return await super().claim(ctx, item)
        return await self._move_leader(ctx, item, item.data["previous_leader"], item.data["new_leader"])

    async def release(self, ctx: RunContext, item: DueNotification) -> None:
        if item.notification_type != LEADER_CHANGE:
            await super().release(ctx, item)
            return
        await self._move_leader(ctx, item, item.data["new_leader"], item.data["previous_leader"])

    async def skipped(self, ctx: RunContext, item: DueNotification) -> None:
        # Nobody wants the announcement; move on so a later opt-in does not get a stale one
        if item.notification_type == LEADER_CHANGE:
            await self._move_leader(ctx, item, item.data["previous_leader"], item.data["new_leader"])
