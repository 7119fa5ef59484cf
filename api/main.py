# api/main.py
from datetime import datetime, timezone
from fastapi import FastAPI, BackgroundTasks, Depends, Query, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from typing import Optional
import os
from dotenv import load_dotenv
from pydantic import ValidationError
from pymongo.errors import PyMongoError
from .auth import require_api_key
from .rate_limit import register_rate_limit, limiter, READ_LIMIT, UPDATE_LIMIT
from scraper.db import load_snapshot
from scheduler.jobs import update_promotions
import logging

load_dotenv()
API_PORT = int(os.getenv("API_PORT", "8000"))

NO_DATA_MESSAGE = "No data found yet. Run an update first."

app = FastAPI(title="Steam Promotions API", version="1.0")

register_rate_limit(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

logger = logging.getLogger("api")
logger.setLevel(logging.INFO)


def filter_promotions(promotions, q=None, genre=None, min_discount=None, sort_by=None):
    """
    Apply the optional listing filters to a snapshot's promotions.

    Args:
        promotions (list[PromotionRecord]): Promotions in pipeline order
        q (str, optional): Case-insensitive substring of the name
        genre (str, optional): Exact (case-insensitive) genre label
        min_discount (int, optional): Minimum discount percentage, inclusive
        sort_by (str, optional): 'discount' (highest first) or 'name' (A-Z).
            Without it the pipeline order is kept.

    Returns:
        list[PromotionRecord]: Matching promotions
    """
    result = list(promotions)
    if q:
        needle = q.casefold()
        result = [p for p in result if needle in p.name.casefold()]
    if genre:
        wanted = genre.casefold()
        result = [p for p in result if any(g.casefold() == wanted for g in p.genres)]
    if min_discount is not None:
        result = [p for p in result if p.discount_percent >= min_discount]
    if sort_by == "discount":
        result.sort(key=lambda p: p.discount_percent, reverse=True)
    elif sort_by == "name":
        result.sort(key=lambda p: p.name.casefold())
    return result


@app.get("/promotions")
@limiter.limit(READ_LIMIT)
async def list_promotions(
    request: Request,
    q: Optional[str] = Query(None),
    genre: Optional[str] = Query(None),
    min_discount: Optional[int] = Query(None, ge=0, le=100),
    sort_by: Optional[str] = Query(None, pattern="^(discount|name)$"),
):
    """
    Serve the latest promotions snapshot.

    Args:
        request (Request): FastAPI request object (required for rate limiting)
        q (str, optional): Name search
        genre (str, optional): Genre filter
        min_discount (int, optional): Minimum discount, 0-100
        sort_by (str, optional): 'discount' or 'name'

    Returns:
        JSONResponse: {lastUpdate, total, promotions}. Before the first
            successful run, lastUpdate is null, the list is empty and a
            message explains why. `total` counts the filtered promotions.

    Raises:
        HTTPException: 503 if the snapshot store cannot be read or the
            stored snapshot is malformed

    Rate Limit:
        READ_RATE_LIMIT per client (100/hour by default)
    """
    try:
        snapshot = await load_snapshot()
    except PyMongoError as e:
        logger.error(f"Could not read snapshot: {e}")
        raise HTTPException(status_code=503, detail="Snapshot store unavailable")
    except ValidationError as e:
        logger.error(f"Stored snapshot is malformed: {e.error_count()} errors")
        raise HTTPException(status_code=503, detail="Snapshot unreadable")

    if snapshot is None:
        return JSONResponse(
            {
                "lastUpdate": None,
                "total": 0,
                "promotions": [],
                "message": NO_DATA_MESSAGE,
            }
        )

    promos = filter_promotions(
        snapshot.promotions,
        q=q,
        genre=genre,
        min_discount=min_discount,
        sort_by=sort_by,
    )
    return JSONResponse(
        {
            "lastUpdate": snapshot.last_update.isoformat(),
            "total": len(promos),
            "promotions": [p.model_dump(mode="json", by_alias=True) for p in promos],
        }
    )


async def run_update():
    try:
        await update_promotions(send_email=True)
        logger.info("Promotions updated via API")
    except Exception:
        logger.exception("Update triggered via API failed")


@app.post("/update", status_code=202, dependencies=[Depends(require_api_key)])
@limiter.limit(UPDATE_LIMIT)
async def trigger_update(request: Request, background_tasks: BackgroundTasks):
    """
    Start a refresh (crawl, store, email) in the background.

    Security:
        Requires a valid API key via X-API-Key header

    Rate Limit:
        UPDATE_RATE_LIMIT per client (5/hour by default)
    """
    background_tasks.add_task(run_update)
    return {"message": "Update started. This may take a few minutes..."}


@app.get("/health")
async def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


# Run uvicorn externally or here
if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host="0.0.0.0", port=API_PORT, reload=True)
