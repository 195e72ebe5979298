import pytest

from familyhub import jobs_state
from familyhub.services.reminder_scheduler import RunSummary


@pytest.fixture(autouse=True)
def clean_states():
    jobs_state.reset_states()
    yield
    jobs_state.reset_states()


@pytest.mark.asyncio
async def test_run_job_records_success():
    async def job(label):
        return RunSummary(message=f"Sent 2 {label}")

    result = await jobs_state.run_job("chores", job, "chore reminders")

    state = jobs_state.get_all_states()["chores"]
    assert result.message == "Sent 2 chore reminders"
    assert state["last_ok"] is True
    assert state["last_error"] is None
    assert state["last_result"] == "Sent 2 chore reminders"
    assert state["last_run_at"] is not None
    assert state["runs"] == 1
    assert state["failures"] == 0
    assert state["last_duration_seconds"] >= 0


@pytest.mark.asyncio
async def test_run_job_records_error_and_reraises():
    async def job():
        raise RuntimeError("database went away")

    with pytest.raises(RuntimeError):
        await jobs_state.run_job("events", job)

    state = jobs_state.get_all_states()["events"]
    assert state["last_ok"] is False
    assert state["last_error"] == "database went away"
    assert state["failures"] == 1


def test_every_scheduled_job_is_reported():
    states = jobs_state.get_all_states()

    assert set(jobs_state.JOB_KEYS_TO_SCHEDULER_IDS) <= set(states)
    assert states["f1-news"]["next_run_at"] is None


def test_reset_clears_previous_results():
    jobs_state.mark_job_error("bins_evening", ValueError("boom"))
    jobs_state.reset_states()

    assert jobs_state.get_all_states()["bins_evening"]["last_ok"] is None
