import pytest

from conftest import FakeDB, make_record
from scheduler import jobs
from scheduler.scheduler import build_scheduler


@pytest.fixture
def pipeline(monkeypatch):
    """Stub crawler returning two promotions and a recording notifier."""
    state = {"closed": 0, "notified": []}
    promos = [make_record("Alpha", 50), make_record("Beta", 75)]

    class FakeCrawler:
        async def run(self, terms=None):
            return promos

        async def close(self):
            state["closed"] += 1

    async def fake_notify(records, config=None):
        state["notified"].append(list(records))
        return "smtp"

    monkeypatch.setattr(jobs, "PromoCrawler", FakeCrawler)
    monkeypatch.setattr(jobs, "notify", fake_notify)
    state["promos"] = promos
    return state


@pytest.mark.asyncio
async def test_update_persists_without_email(monkeypatch, pipeline):
    fake = FakeDB()
    monkeypatch.setattr("scraper.db.get_db", lambda: fake)

    promos = await jobs.update_promotions()

    assert promos == pipeline["promos"]
    assert fake.snapshots.docs[0]["total"] == 2
    assert pipeline["notified"] == []
    assert pipeline["closed"] == 1


@pytest.mark.asyncio
async def test_update_with_email_notifies(monkeypatch, pipeline):
    monkeypatch.setattr("scraper.db.get_db", lambda: FakeDB())

    await jobs.update_promotions(send_email=True)

    assert pipeline["notified"] == [pipeline["promos"]]


@pytest.mark.asyncio
async def test_storage_failure_does_not_block_email(monkeypatch, pipeline):
    """
    A snapshot write failure is logged and the email still goes out; the
    run returns its promotions normally.
    """

    async def failing_save(records):
        return None

    monkeypatch.setattr(jobs, "save_snapshot", failing_save)

    promos = await jobs.update_promotions(send_email=True)

    assert len(promos) == 2
    assert len(pipeline["notified"]) == 1


def test_scheduler_registers_both_jobs():
    scheduler = build_scheduler(
        data_schedule="*/5 * * * *",
        email_schedule="0 7 * * *",
        timezone="America/Sao_Paulo",
    )
    ids = sorted(job.id for job in scheduler.get_jobs())
    assert ids == ["daily_email", "data_update"]


def test_scheduler_jobs_can_be_disabled():
    scheduler = build_scheduler(enable_data_update=False, enable_email=False)
    assert scheduler.get_jobs() == []
