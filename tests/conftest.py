import sys
import os

ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, ROOT_DIR)

os.environ["API_KEY"] = "testapikey"
os.environ["EMAIL_DISABLED"] = "true"

from datetime import datetime, timezone
from typing import Callable, List

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from api.main import app
from api.rate_limit import limiter
from scraper.models import PromotionRecord

SEARCH_PATH = "/search/"
DETAILS_PATH = "/api/appdetails"


class FakeCollection:
    def __init__(self, docs=None):
        self.docs = list(docs or [])
        self.replace_calls = 0

    async def find_one(self, q):
        """
        Return a copy of the first document whose fields equal the query's.

        Only exact key-value matches are supported, which is all the snapshot
        store needs (lookups by `_id`).
        """
        for d in self.docs:
            if all(d.get(k) == v for k, v in (q or {}).items()):
                return dict(d)
        return None

    async def replace_one(self, q, doc, upsert=False):
        """
        Replace the first matching document, inserting when `upsert` is set.

        Returns:
            dict: {"matched_count": 0 | 1}
        """
        self.replace_calls += 1
        for i, d in enumerate(self.docs):
            if all(d.get(k) == v for k, v in q.items()):
                self.docs[i] = dict(doc)
                return {"matched_count": 1}
        if upsert:
            self.docs.append(dict(doc))
        return {"matched_count": 0}


class FakeDB:
    def __init__(self, snapshots=None):
        self.snapshots = FakeCollection(snapshots or [])


def make_record(name, discount, app_id=None, genres=None):
    app_id = app_id or str(1000 + discount)
    return PromotionRecord(
        name=name,
        initial_price="R$ 100,00",
        final_price=f"R$ {100 - discount},00",
        discount_percent=discount,
        link=f"https://store.steampowered.com/app/{app_id}/",
        image_url=f"https://cdn.akamai.steamstatic.com/steam/apps/{app_id}/header.jpg",
        genres=genres or [],
    )


def app_details_payload(app_id, discount, name=None, **data):
    """Build an appdetails body for one id the way the store answers it."""
    body = {
        "name": name or f"Game {app_id}",
        "price_overview": {
            "currency": "BRL",
            "initial": 10000,
            "final": 10000 - discount * 100,
            "discount_percent": discount,
            "initial_formatted": "R$ 100,00",
            "final_formatted": f"R$ {100 - discount},00",
        },
    }
    body.update(data)
    return {app_id: {"success": True, "data": body}}


@pytest.fixture
def sample_promotions():
    """
    Three promotions with distinct discounts and genres.

    - Alpha: 50% off, Action
    - Beta: 75% off, RPG + Action
    - Gamma: 20% off, Indie
    """
    return [
        make_record("Alpha", 50, "101", ["Action"]),
        make_record("Beta", 75, "102", ["RPG", "Action"]),
        make_record("Gamma", 20, "103", ["Indie"]),
    ]


@pytest.fixture
def fake_db(sample_promotions):
    """FakeDB holding one stored snapshot of the sample promotions."""
    doc = {
        "_id": "current",
        "lastUpdate": datetime(2025, 1, 2, 7, 0, tzinfo=timezone.utc).isoformat(),
        "total": len(sample_promotions),
        "promotions": [
            p.model_dump(mode="json", by_alias=True) for p in sample_promotions
        ],
    }
    return FakeDB(snapshots=[doc])


@pytest.fixture
async def store_client():
    """
    Factory for httpx clients backed by a fake store.

    Usage:
        client, calls = store_client(handler)

    `handler(request)` returns an httpx.Response (or raises); every request
    that reaches the fake store is appended to `calls`.
    """
    clients = []

    def factory(handler: Callable[[httpx.Request], httpx.Response]):
        calls: List[httpx.Request] = []

        def recording(request):
            calls.append(request)
            return handler(request)

        c = httpx.AsyncClient(transport=httpx.MockTransport(recording))
        clients.append(c)
        return c, calls

    yield factory

    for c in clients:
        await c.aclose()


@pytest.fixture
async def client(monkeypatch, fake_db):
    """
    Async API client with the snapshot store patched to `fake_db`.

    The rate limiter is reset so tests do not share counters.
    """
    monkeypatch.setattr("scraper.db.get_db", lambda: fake_db)
    limiter.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
