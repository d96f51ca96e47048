import asyncio

import pytest

from nexacore.jobs import worker


@pytest.mark.asyncio
async def test_run_worker_runs_job(monkeypatch):
    called = {"ok": False}

    async def dummy_job():
        called["ok"] = True

    monkeypatch.setitem(worker.JOB_REGISTRY, "dummy", dummy_job)

    await worker.run_worker(" Dummy ")

    assert called["ok"] is True


@pytest.mark.asyncio
async def test_run_worker_unknown_job():
    with pytest.raises(ValueError):
        await worker.run_worker("missing")


def test_registry_lists_maintenance_jobs():
    assert set(worker.JOB_REGISTRY) == {"presence_cleanup", "rate_limit_sweep"}


@pytest.mark.asyncio
async def test_background_jobs_start_and_stop(monkeypatch):
    started = asyncio.Event()
    cancelled = {"value": False}

    async def looping_job():
        started.set()
        try:
            await asyncio.sleep(3600)
        except asyncio.CancelledError:
            cancelled["value"] = True
            raise

    monkeypatch.setitem(worker.JOB_REGISTRY, "looping", looping_job)

    tasks = worker.start_background_jobs(["looping"])
    await asyncio.wait_for(started.wait(), timeout=1)
    assert [task.get_name() for task in tasks] == ["job:looping"]

    await worker.stop_background_jobs(tasks)

    assert cancelled["value"] is True
    assert all(task.done() for task in tasks)


def test_start_background_jobs_rejects_unknown_names():
    with pytest.raises(ValueError):
        worker.start_background_jobs(["missing"])
