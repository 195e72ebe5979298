"""Generic "find due items, check preferences, claim, send, log" engine.

Each notification category supplies a small ``ReminderCategory`` descriptor;
the engine owns everything else. The claim is a compare-and-set on the
storage side, so two overlapping runs cannot both dispatch the same item.
Delivery is at-least-once: a claim is released again when nothing reached a
device, and the next run retries while the item is still due.
"""
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import delete, insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from familyhub.models.notification_log import NotificationStatus
from familyhub.models.notification_preferences import NotificationPreferences
from familyhub.models.reminder_claim import ReminderClaim
from familyhub.services import device_registry
from familyhub.services.f1_feeds import F1FeedService
from familyhub.services.notification_ledger import LedgerEntry, NotificationLedger
from familyhub.services.preferences import load_preferences
from familyhub.services.push_dispatcher import NOT_CONFIGURED, PushDispatcher, PushPayload
from familyhub.utils.timezone import Clock, utcnow

logger = logging.getLogger(__name__)

# Longer than any due window or ledger dedupe window
CLAIM_RETENTION = timedelta(days=7)


class InvalidRunType(ValueError):
    pass


@dataclass
class DueNotification:
    """One logical notification. ``recipients=None`` means every owner with a device."""

    reference_id: str
    notification_type: str
    title: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)
    recipients: Optional[list[str]] = None
    # Part of the claim key: the lead time, or the recipient for per-owner items
    scope: str = ""
    # Subtype preference flags that must all be on
    flags: tuple[str, ...] = ()
    # Owners who caused the change, checked against ``own_changes_flag``
    actor_ids: frozenset[str] = frozenset()
    own_changes_flag: Optional[str] = None
    # Skip owners that already got this reference within the window
    dedupe_hours: Optional[float] = None

    def payload(self) -> PushPayload:
        return PushPayload(title=self.title, body=self.body, data={"type": self.notification_type, **self.data})


@dataclass
class RunContext:
    session: AsyncSession
    dispatcher: PushDispatcher
    ledger: NotificationLedger
    clock: Clock
    run_type: Optional[str] = None
    feeds: Optional[F1FeedService] = None

    def now(self):
        return self.clock()


@dataclass
class RunSummary:
    message: str
    count: int = 0
    attempted: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    run_type: Optional[str] = None
    ledger_degraded: bool = False
    results: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "count": self.count,
            "attempted": self.attempted,
            "sent": self.sent,
            "failed": self.failed,
            "skipped": self.skipped,
            "run_type": self.run_type,
            "ledger_degraded": self.ledger_degraded,
            "results": self.results,
        }


class ReminderCategory:
    """Descriptor for one notification category.

    Subclasses implement ``collect``. The default claim stores a row in
    ``reminder_claims`` keyed by (category, reference, scope).
    """

    name: str = ""
    ledger_category: str = ""
    category_flag: str = ""
    # Used in the summary message, e.g. "Sent 3 bin reminders"
    noun: str = "notifications"
    # Claims older than this are deleted after each run
    claim_retention: timedelta = CLAIM_RETENTION

    def resolve_run_type(self, run_type: Optional[str], ctx: RunContext) -> Optional[str]:
        return run_type

    async def collect(self, ctx: RunContext) -> list[DueNotification]:
        raise NotImplementedError

    def allows(self, owner_id: str, prefs: NotificationPreferences, item: DueNotification) -> bool:
        if not prefs.allows(self.category_flag):
            return False
        if not all(prefs.flag(flag) for flag in item.flags):
            return False
        # "My own change" only when this owner made every change in the batch
        if item.own_changes_flag and item.actor_ids and item.actor_ids == {owner_id}:
            return prefs.flag(item.own_changes_flag)
        return True

    def _claim_key(self, item: DueNotification) -> tuple[str, str, str]:
        return (self.name, item.reference_id, item.scope)

    async def claim(self, ctx: RunContext, item: DueNotification) -> bool:
        category, reference_id, scope = self._claim_key(item)
        try:
            async with ctx.session.begin_nested():
                await ctx.session.execute(
                    insert(ReminderClaim).values(
                        category=category, reference_id=reference_id, scope=scope, claimed_at=ctx.now()
                    )
                )
        except IntegrityError:
            return False
        return True

    async def release(self, ctx: RunContext, item: DueNotification) -> None:
        category, reference_id, scope = self._claim_key(item)
        await ctx.session.execute(
            delete(ReminderClaim).where(
                ReminderClaim.category == category,
                ReminderClaim.reference_id == reference_id,
                ReminderClaim.scope == scope,
            )
        )

    async def skipped(self, ctx: RunContext, item: DueNotification) -> None:
        """Called when no recipient wants the item; nothing is claimed."""

    async def prune_claims(self, ctx: RunContext) -> int:
        result = await ctx.session.execute(
            delete(ReminderClaim).where(
                ReminderClaim.category == self.name,
                ReminderClaim.claimed_at < ctx.now() - self.claim_retention,
            )
        )
        return result.rowcount or 0

    async def after_run(self, ctx: RunContext) -> None:
        """Hook for per-run housekeeping; runs after every item is committed."""

    def message(self, summary: RunSummary) -> str:
        return f"Sent {summary.count} {self.noun}"


class ReminderScheduler:
    def __init__(
        self,
        session: AsyncSession,
        dispatcher: PushDispatcher,
        clock: Clock = utcnow,
        feeds: Optional[F1FeedService] = None,
    ) -> None:
        self.session = session
        self.dispatcher = dispatcher
        self.clock = clock
        self.feeds = feeds
        self.ledger = NotificationLedger(session, clock=clock)

    async def run(self, category: ReminderCategory, run_type: Optional[str] = None) -> RunSummary:
        ctx = RunContext(
            session=self.session,
            dispatcher=self.dispatcher,
            ledger=self.ledger,
            clock=self.clock,
            feeds=self.feeds,
        )
        ctx.run_type = category.resolve_run_type(run_type, ctx)

        if not self.dispatcher.is_configured:
            logger.warning(f"Skipping {category.name} run: push gateway not configured")
            return RunSummary(message=NOT_CONFIGURED, run_type=ctx.run_type)

        items = await category.collect(ctx)
        summary = RunSummary(message="", run_type=ctx.run_type)

        for item in items:
            summary.attempted += 1
            try:
                result = await self._process(ctx, category, item)
                await self.session.commit()
            except SQLAlchemyError as exc:
                await self.session.rollback()
                logger.error(
                    f"{category.name} item {item.reference_id} failed: {exc}",
                    extra={"category": category.name, "reference_id": item.reference_id},
                )
                result = {"reference_id": item.reference_id, "status": "error", "error": str(exc)}
            except Exception as exc:
                # One broken item must not starve the rest of the batch
                await self.session.rollback()
                logger.exception(
                    f"{category.name} item {item.reference_id} raised",
                    extra={"category": category.name, "reference_id": item.reference_id},
                )
                result = {"reference_id": item.reference_id, "status": "error", "error": str(exc)}

            status = result["status"]
            if status == "sent":
                summary.count += 1
            elif status in ("skipped", "claimed_elsewhere"):
                summary.skipped += 1
            summary.sent += result.get("sent", 0)
            summary.failed += result.get("failed", 0)
            summary.results.append(result)

        await category.after_run(ctx)
        pruned = await category.prune_claims(ctx)
        await self.session.commit()
        if pruned:
            logger.debug(f"Pruned {pruned} expired {category.name} claims")

        summary.ledger_degraded = self.ledger.degraded
        summary.message = category.message(summary) if items else f"No due {category.noun}"
        logger.info(
            f"{category.name} run complete: {summary.count}/{summary.attempted} delivered",
            extra={"category": category.name, "run_type": ctx.run_type, "sent": summary.sent},
        )
        return summary

    async def _recipients(self, ctx: RunContext, item: DueNotification) -> list[str]:
        if item.recipients is not None:
            return item.recipients
        return await device_registry.owners_with_tokens(ctx.session)

    async def _process(self, ctx: RunContext, category: ReminderCategory, item: DueNotification) -> dict[str, Any]:
        result: dict[str, Any] = {
            "reference_id": item.reference_id,
            "type": item.notification_type,
            "scope": item.scope or None,
        }

        owners = await self._recipients(ctx, item)
        prefs = await load_preferences(ctx.session, owners)
        eligible = [owner for owner in owners if category.allows(owner, prefs[owner], item)]
        if not eligible:
            # Nothing claimed; a later preference change can still pick it up
            await category.skipped(ctx, item)
            result["status"] = "skipped"
            result["reason"] = "no_eligible_recipients"
            return result

        if not await category.claim(ctx, item):
            result["status"] = "claimed_elsewhere"
            return result

        payload = item.payload()
        sent_devices = 0
        failed_devices = 0
        delivered_to: list[str] = []

        for owner_id in eligible:
            if item.dedupe_hours is not None and await ctx.ledger.was_already_sent(
                owner_id, category.ledger_category, item.notification_type, item.reference_id, item.dedupe_hours
            ):
                continue

            summary = await ctx.dispatcher.send_to_owner(ctx.session, owner_id, payload)
            if summary.total == 0:
                continue

            sent_devices += summary.sent
            failed_devices += len(summary.failures)
            if summary.delivered:
                delivered_to.append(owner_id)

            await ctx.ledger.append(
                LedgerEntry(
                    owner_id=owner_id,
                    category=category.ledger_category,
                    notification_type=item.notification_type,
                    reference_id=item.reference_id,
                    title=item.title,
                    body=item.body,
                    data=item.data,
                    status=NotificationStatus.SENT if summary.delivered else NotificationStatus.FAILED,
                    error_message=None if summary.delivered else summary.error_summary(),
                )
            )

        if not delivered_to:
            await category.release(ctx, item)

        result["status"] = "sent" if delivered_to else "not_delivered"
        result["recipients"] = delivered_to
        result["sent"] = sent_devices
        result["failed"] = failed_devices
        return result
