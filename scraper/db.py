# scraper/db.py
import logging
import os
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError
from dotenv import load_dotenv

from .models import Snapshot

load_dotenv()

MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB = os.getenv("MONGO_DB", "steam_promos")

# the store only ever holds the latest run
SNAPSHOT_ID = "current"

_client = None
_db = None

logger = logging.getLogger("scraper.db")
logger.setLevel(logging.INFO)


def get_client():
    """Initialize and return the MongoDB AsyncIOMotorClient singleton."""
    global _client, _db
    if _client is None:
        _client = AsyncIOMotorClient(MONGO_URI)
        _db = _client[MONGO_DB]
    return _client


def get_db():
    """Return the MongoDB database instance, initializing if needed."""
    global _db
    if _db is None:
        get_client()
    return _db


async def save_snapshot(records):
    """
    Replace the stored snapshot with the given promotions.

    Args:
        records (list[PromotionRecord]): Output of one pipeline run

    Returns:
        Snapshot or None: The snapshot written, or None when the write failed.
            Storage errors are logged, never raised.
    """
    snapshot = Snapshot.from_records(records)
    doc = snapshot.to_document()
    doc["_id"] = SNAPSHOT_ID
    try:
        db = get_db()
        await db.snapshots.replace_one({"_id": SNAPSHOT_ID}, doc, upsert=True)
    except PyMongoError as e:
        logger.error(f"Failed to save snapshot: {e}")
        return None
    logger.info(f"Snapshot saved with {snapshot.total} promotions")
    return snapshot


async def load_snapshot():
    """Return the current Snapshot, or None if no run has been stored yet."""
    db = get_db()
    doc = await db.snapshots.find_one({"_id": SNAPSHOT_ID})
    if not doc:
        return None
    doc.pop("_id", None)
    return Snapshot.model_validate(doc)
