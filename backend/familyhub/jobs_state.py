"""Bookkeeping for the in-process cron, reported by /api/health/jobs."""
import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from familyhub.core.scheduler import get_scheduler

logger = logging.getLogger(__name__)

# Job key -> scheduler job id
JOB_KEYS_TO_SCHEDULER_IDS: dict[str, str] = {
    "events": "events_reminders",
    "bins_evening": "bins_evening",
    "bins_morning": "bins_morning",
    "chores": "chores_digest",
    "shopping-list": "shopping_list_changes",
    "f1-sessions": "f1_sessions",
    "f1-news": "f1_news",
    "f1-results": "f1_results",
    "routines": "routine_reminders",
    "tasks": "task_reminders",
    "birthdays": "birthday_reminders",
}


@dataclass
class JobStatus:
    last_run_at: Optional[str] = None
    last_ok: Optional[bool] = None
    last_error: Optional[str] = None
    # RunSummary.message of the last successful run
    last_result: Optional[str] = None
    last_duration_seconds: Optional[float] = None
    runs: int = 0
    failures: int = 0
    next_run_at: Optional[str] = None


_job_states: dict[str, JobStatus] = {}


def _state(job_key: str) -> JobStatus:
    return _job_states.setdefault(job_key, JobStatus())


def _iso_utc(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def mark_job_start(job_key: str) -> None:
    state = _state(job_key)
    state.runs += 1
    state.last_run_at = _iso_utc(datetime.now(timezone.utc))


def mark_job_success(job_key: str, result: Any = None, duration: Optional[float] = None) -> None:
    state = _state(job_key)
    state.last_ok = True
    state.last_error = None
    state.last_duration_seconds = duration
    message = getattr(result, "message", None)
    if message:
        state.last_result = message


def mark_job_error(job_key: str, error: BaseException, duration: Optional[float] = None) -> None:
    state = _state(job_key)
    state.last_ok = False
    state.failures += 1
    state.last_error = str(error)
    state.last_duration_seconds = duration
    logger.error(f"Job '{job_key}' failed: {error}", extra={"job": job_key})


def refresh_next_run(job_key: str) -> None:
    scheduler = get_scheduler()
    job_id = JOB_KEYS_TO_SCHEDULER_IDS.get(job_key)
    if scheduler is None or job_id is None:
        return
    job = scheduler.get_job(job_id)
    _state(job_key).next_run_at = _iso_utc(job.next_run_time) if job else None


def get_all_states() -> dict[str, dict[str, Any]]:
    states = {}
    for job_key in {**JOB_KEYS_TO_SCHEDULER_IDS, **_job_states}:
        refresh_next_run(job_key)
        states[job_key] = asdict(_state(job_key))
    return states


def reset_states() -> None:
    _job_states.clear()


async def run_job(job_key: str, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
    """Awaits ``func`` and records the outcome; exceptions are re-raised for apscheduler to log."""
    mark_job_start(job_key)
    started = time.monotonic()
    try:
        result = await func(*args, **kwargs)
    except Exception as exc:
        mark_job_error(job_key, exc, round(time.monotonic() - started, 3))
        raise
    else:
        mark_job_success(job_key, result, round(time.monotonic() - started, 3))
        return result
    finally:
        refresh_next_run(job_key)
