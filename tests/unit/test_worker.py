import pytest

from app.jobs import worker


@pytest.mark.asyncio
async def test_run_worker_dispatches_registered_job(monkeypatch):
    called = {"ok": False}

    async def dummy_job():
        called["ok"] = True

    monkeypatch.setitem(worker.JOB_REGISTRY, "letter_generation", dummy_job)

    await worker.run_worker("Letter_Generation ")

    assert called["ok"] is True


@pytest.mark.asyncio
async def test_run_worker_unknown_job():
    with pytest.raises(ValueError, match="letter_generation"):
        await worker.run_worker("missing")


def test_job_name_defaults_to_letter_generation(monkeypatch):
    monkeypatch.setattr(worker.sys, "argv", ["worker"])
    monkeypatch.delenv("WORKER_JOB", raising=False)

    assert worker._resolve_job_name() == "letter_generation"


def test_job_name_from_cli_wins(monkeypatch):
    monkeypatch.setattr(worker.sys, "argv", ["worker", "Other_Job"])
    monkeypatch.setenv("WORKER_JOB", "letter_generation")

    assert worker._resolve_job_name() == "other_job"
