import asyncio

import httpx
import pytest

from conftest import DETAILS_PATH, app_details_payload, make_record
from scraper import crawler as crawler_mod
from scraper.crawler import PromoCrawler, harvest_and_fetch
from scraper.utils import chunked


def ids_page(ids):
    return "".join(f'<div data-ds-appid="{i}"></div>' for i in ids)


@pytest.mark.asyncio
async def test_empty_harvest_makes_no_detail_requests(store_client):
    """
    An empty harvest short-circuits the run.

    Asserts:
        - run() returns []
        - No request ever reaches the details endpoint
    """
    client, calls = store_client(lambda request: httpx.Response(200, text="<html></html>"))
    c = PromoCrawler(client=client)

    promos = await c.run(["", "rpg"])

    assert promos == []
    assert calls
    assert not [r for r in calls if r.url.path == DETAILS_PATH]


@pytest.mark.asyncio
async def test_partial_batch_failure_keeps_successes_in_order(store_client):
    """
    Three of ten concurrent detail requests fail; the seven successful
    records come back in batch order and nothing is raised.

    Failures are a 400, a 500 and a network error. A second batch holds two
    discounted ids and one that is not discounted, which is dropped.
    """
    ids = [str(i) for i in range(101, 114)]
    failing = {"103": 400, "106": 500}

    def handler(request):
        if request.url.path != DETAILS_PATH:
            return httpx.Response(200, text=ids_page(ids))
        app_id = request.url.params["appids"]
        if app_id in failing:
            return httpx.Response(failing[app_id])
        if app_id == "109":
            raise httpx.ConnectError("reset", request=request)
        if app_id == "113":
            return httpx.Response(200, json=app_details_payload(app_id, 0))
        return httpx.Response(200, json=app_details_payload(app_id, int(app_id) - 100))

    client, _ = store_client(handler)
    c = PromoCrawler(client=client, batch_size=10, batch_delay=0)

    promos = await c.run([""])

    names = [p.name for p in promos]
    first_batch = [f"Game {i}" for i in ids[:10] if i not in ("103", "106", "109")]
    assert len(first_batch) == 7
    assert sorted(names[:7]) == sorted(first_batch)
    assert names[7:] == ["Game 111", "Game 112"]
    assert "Game 113" not in names
    assert all(p.discount_percent > 0 for p in promos)


@pytest.mark.asyncio
async def test_exception_in_one_fetch_does_not_cancel_siblings(store_client, monkeypatch):
    client, _ = store_client(lambda request: httpx.Response(200, text=ids_page(["201", "202", "203"])))
    c = PromoCrawler(client=client, batch_size=3, batch_delay=0)

    async def fake_fetch_detail(app_id):
        if app_id == "202":
            raise RuntimeError("unexpected")
        await asyncio.sleep(0)
        return make_record(f"Game {app_id}", 30, app_id)

    monkeypatch.setattr(c.fetcher, "fetch_detail", fake_fetch_detail)

    promos = await c.run([""])

    assert sorted(p.name for p in promos) == ["Game 201", "Game 203"]


@pytest.mark.asyncio
async def test_batches_run_sequentially_with_bounded_concurrency(store_client, monkeypatch):
    """
    No more than batch_size fetches are ever in flight, and the pacing sleep
    happens between batches only (3 batches -> 2 sleeps).
    """
    ids = [str(i) for i in range(300, 325)]
    client, _ = store_client(lambda request: httpx.Response(200, text=ids_page(ids)))
    c = PromoCrawler(client=client, batch_size=10, batch_delay=0.1)

    in_flight = 0
    peak = 0

    async def fake_fetch_detail(app_id):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0)
        in_flight -= 1
        return make_record(f"Game {app_id}", 10, app_id)

    sleeps = []
    real_sleep = asyncio.sleep

    async def fake_sleep(delay, *args, **kwargs):
        if delay:
            sleeps.append(delay)
        await real_sleep(0)

    monkeypatch.setattr(c.fetcher, "fetch_detail", fake_fetch_detail)
    monkeypatch.setattr(crawler_mod.asyncio, "sleep", fake_sleep)

    promos = await c.run([""])

    assert len(promos) == 25
    assert peak <= 10
    assert sleeps == [0.1, 0.1]
    # batch N results precede batch N+1 results
    batch_index = [ids.index(p.name.split()[1]) // 10 for p in promos]
    assert batch_index == sorted(batch_index)


@pytest.mark.asyncio
async def test_harvest_and_fetch_closes_client(monkeypatch):
    closed = []

    async def fake_run(self, terms=None):
        return [make_record("Solo", 40)]

    async def fake_close(self):
        closed.append(True)

    monkeypatch.setattr(PromoCrawler, "run", fake_run)
    monkeypatch.setattr(PromoCrawler, "close", fake_close)

    promos = await harvest_and_fetch()

    assert [p.name for p in promos] == ["Solo"]
    assert closed == [True]


@pytest.mark.asyncio
async def test_close_leaves_injected_client_open(store_client):
    client, _ = store_client(lambda request: httpx.Response(200, text="<html></html>"))
    c = PromoCrawler(client=client)

    await c.close()

    assert not client.is_closed


@pytest.mark.asyncio
async def test_close_shuts_own_client():
    c = PromoCrawler()

    await c.close()

    assert c.client.is_closed


def test_chunked_preserves_order():
    assert chunked(["a", "b", "c", "d", "e"], 2) == [["a", "b"], ["c", "d"], ["e"]]
    assert chunked([], 10) == []
    with pytest.raises(ValueError):
        chunked(["a"], 0)
