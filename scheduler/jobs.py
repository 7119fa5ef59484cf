# scheduler/jobs.py
from scraper.crawler import PromoCrawler
from scraper.db import save_snapshot
from utils.alerts import notify
import logging

logger = logging.getLogger("jobs")
logger.setLevel(logging.INFO)


async def update_promotions(send_email=False):
    """
    Refresh the promotions snapshot and optionally email the digest.

    Runs one crawl, replaces the stored snapshot with its result and, when
    asked to, sends the digest. The steps are isolated from each other: a
    storage failure does not prevent the email and an email failure never
    touches the stored snapshot.

    Args:
        send_email (bool): Also send the digest email. Defaults to False.

    Returns:
        list[PromotionRecord]: Promotions found by this run

    Logs:
        - Info when the refresh starts and finishes
        - Error when the snapshot could not be stored

    Note:
        The crawler is always closed in the finally block.
    """
    logger.info("Updating promotions data...")
    c = PromoCrawler()
    try:
        promos = await c.run()
    finally:
        await c.close()

    snapshot = await save_snapshot(promos)
    if snapshot is None:
        logger.error("Snapshot not stored, API keeps serving the previous one")

    if send_email:
        await notify(promos)

    logger.info(f"Update finished: {len(promos)} promotions found")
    return promos
