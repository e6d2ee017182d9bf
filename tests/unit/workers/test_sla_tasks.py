"""Tests for the periodic SLA breach scan."""

from datetime import timedelta

import pytest

from workers import celery_config
from workers.tasks import sla as sla_tasks


class FakeEngine:
    def __init__(self):
        self.disposed = False

    async def dispose(self):
        self.disposed = True


@pytest.fixture
def engine(monkeypatch):
    fake = FakeEngine()
    monkeypatch.setattr(sla_tasks, "db_engine", fake)
    return fake


class TestScanAllCompanies:
    async def test_counts_breaches_per_company(self, engine, factory, company, now):
        quiet = await factory.company("Quiet Co")
        await factory.sla_config(company, "Screening", 2)
        seeded = await factory.job(company)
        for name in ("Ana", "Ben"):
            await factory.application(
                seeded, await factory.candidate(company, name=name), stage="Screening",
                entered_at=now - timedelta(days=5),
            )

        counts = await sla_tasks.scan_all_companies()

        assert counts == {company.id: 2, quiet.id: 0}
        assert engine.disposed

    async def test_engine_disposed_on_failure(self, engine, monkeypatch):
        async def broken():
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(sla_tasks.sla_service, "list_company_ids", broken)

        with pytest.raises(RuntimeError):
            await sla_tasks.scan_all_companies()
        assert engine.disposed


class TestScanTask:
    def test_task_summarizes_counts(self, monkeypatch):
        async def fake_scan():
            return {1: 2, 2: 0}

        monkeypatch.setattr(sla_tasks, "scan_all_companies", fake_scan)

        result = sla_tasks.scan_sla_breaches.apply().get()

        assert result == {
            "status": "completed",
            "companies_scanned": 2,
            "total_breaches": 2,
            "breaches_by_company": {"1": 2, "2": 0},
        }

    def test_scan_is_scheduled_on_the_sla_queue(self):
        entry = celery_config.beat_schedule["scan-sla-breaches"]
        assert entry["task"] == sla_tasks.scan_sla_breaches.name
        assert celery_config.task_routes["workers.tasks.sla.*"] == {"queue": "sla"}
