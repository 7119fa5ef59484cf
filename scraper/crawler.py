# scraper/crawler.py
import asyncio
import os
import logging
from dotenv import load_dotenv

from .details import DetailFetcher
from .harvester import Harvester, MAX_PROMOTIONS_TO_CHECK
from .utils import build_client, chunked

load_dotenv()
BATCH_SIZE = int(os.getenv("BATCH_SIZE", "10"))
BATCH_DELAY = float(os.getenv("BATCH_DELAY", "0.1"))

SEARCH_TERMS = ["", "action", "rpg", "strategy", "adventure", "indie"]

logger = logging.getLogger("scraper")
logger.setLevel(logging.INFO)
handler = logging.StreamHandler()
handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
logger.addHandler(handler)


class PromoCrawler:
    def __init__(
        self,
        client=None,
        batch_size=BATCH_SIZE,
        batch_delay=BATCH_DELAY,
        max_ids=MAX_PROMOTIONS_TO_CHECK,
        harvest_mode=None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._owns_client = client is None
        self.client = client or build_client()
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        harvester_kwargs = {"max_ids": max_ids}
        if harvest_mode:
            harvester_kwargs["mode"] = harvest_mode
        self.harvester = Harvester(self.client, **harvester_kwargs)
        self.fetcher = DetailFetcher(self.client)

    async def close(self):
        """
        Close the HTTP client if this crawler created it.

        Returns:
            None

        Note:
            Always call this in a finally block; the client is shared by the
            harvester and the detail fetcher. A client passed in by the caller
            stays open and remains the caller's to close.
        """
        if self._owns_client:
            await self.client.aclose()

    async def fetch_batch(self, app_ids):
        """
        Fetch details for one batch concurrently and keep the promotions.

        All requests are awaited to completion before any result is inspected,
        so a failure never cancels its siblings. Each outcome is either a
        record, None (not on sale / no data) or an exception, which is logged
        and dropped.

        Args:
            app_ids (list[str]): Identifiers of this batch

        Returns:
            list[PromotionRecord]: Promotions found in this batch
        """
        results = await asyncio.gather(
            *(self.fetcher.fetch_detail(a) for a in app_ids), return_exceptions=True
        )
        found = []
        for app_id, result in zip(app_ids, results):
            if isinstance(result, BaseException):
                logger.error(f"Details for {app_id} failed: {result!r}")
                continue
            if result is None:
                continue
            logger.info(f"Promotion found: {result.name} - {result.discount_percent}% OFF")
            found.append(result)
        return found

    async def run(self, terms=None):
        """
        Run the promotion-discovery pipeline once.

        Returns:
            list[PromotionRecord]: Discounted apps in batch order. Not sorted
                by discount; that is left to presentation.

        Process:
            1. Harvests app ids from the search pages for every term
            2. Returns [] right away when nothing was harvested
            3. Splits ids into batches of `batch_size`
            4. Runs batches one after another, each batch's requests concurrently
            5. Sleeps `batch_delay` between batches (not after the last one)

        Note:
            At most `batch_size` detail requests are in flight at any time.
            Upstream failures only ever cost the affected item or term.
        """
        terms = SEARCH_TERMS if terms is None else list(terms)
        app_ids = await self.harvester.harvest(terms)
        if not app_ids:
            logger.info("No discounted apps found on the search pages")
            return []

        batches = chunked(app_ids, self.batch_size)
        logger.info(
            f"Checking details of {len(app_ids)} apps in {len(batches)} batches"
        )
        promotions = []
        for i, batch in enumerate(batches):
            if i and self.batch_delay:
                await asyncio.sleep(self.batch_delay)
            promotions.extend(await self.fetch_batch(batch))
            logger.info(
                f"Processed {min((i + 1) * self.batch_size, len(app_ids))}/{len(app_ids)} apps"
            )
        logger.info(f"{len(promotions)} promotions found")
        return promotions


async def harvest_and_fetch(terms=None, **kwargs):
    """Open a crawler, run the pipeline once and close it again."""
    c = PromoCrawler(**kwargs)
    try:
        return await c.run(terms)
    finally:
        await c.close()


# convenience script
async def main():
    promos = await harvest_and_fetch()
    for p in sorted(promos, key=lambda p: p.discount_percent, reverse=True):
        print(f"-{p.discount_percent}% {p.name}: {p.initial_price} -> {p.final_price}")


if __name__ == "__main__":
    asyncio.run(main())
