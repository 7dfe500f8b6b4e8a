import asyncio

import pytest

from src.workers.survey_scheduler import SurveySchedulerWorker


@pytest.mark.asyncio
async def test_run_once_schedules_then_retries(survey_service, fake_store, fake_gateway):
    fake_store.due_visits = [{"id": "visit-9", "customers": {"id": "c9", "phone": "+15550009999"}}]
    worker = SurveySchedulerWorker(service=survey_service, poll_interval=60)

    results = await worker.run_once()

    assert results["scheduled"]["sent"] == 1
    assert results["retried"] == {"candidates": 0, "resent": 0, "superseded": 0, "failed": 0}
    assert len(fake_gateway.sent) == 1


@pytest.mark.asyncio
async def test_scheduling_failure_does_not_skip_retries(survey_service, fake_store, monkeypatch):
    async def broken(*args, **kwargs):
        raise RuntimeError("store unavailable")

    monkeypatch.setattr(fake_store, "get_service_visits_due_for_survey", broken)
    worker = SurveySchedulerWorker(service=survey_service, poll_interval=60)

    results = await worker.run_once()

    assert "scheduled" not in results
    assert results["retried"]["candidates"] == 0


@pytest.mark.asyncio
async def test_stop_ends_the_loop(survey_service):
    worker = SurveySchedulerWorker(service=survey_service, poll_interval=60)

    task = asyncio.create_task(worker.start())
    await asyncio.sleep(0.01)
    await worker.stop()

    await asyncio.wait_for(task, timeout=1)
