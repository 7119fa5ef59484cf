# scraper/harvester.py
import asyncio
import json
import logging
import os
import re

import httpx
from bs4 import BeautifulSoup
from dotenv import load_dotenv

from .models import is_canonical_integer, is_valid_identifier
from .utils import fetch, is_rate_limited

load_dotenv()
SEARCH_URL = os.getenv("STEAM_SEARCH_URL", "https://store.steampowered.com/search/")
REGION = os.getenv("STEAM_REGION", "br")
LANGUAGE = os.getenv("STEAM_LANGUAGE", "brazilian")
MAX_PROMOTIONS_TO_CHECK = int(os.getenv("MAX_PROMOTIONS_TO_CHECK", "100"))
HARVEST_MODE = os.getenv("HARVEST_MODE", "concurrent")
HARVEST_DELAY = float(os.getenv("HARVEST_DELAY", "1.0"))

APP_LINK_RE = re.compile(r"/app/(\d+)")
SEARCH_RESULTS_RE = re.compile(r"rgSearchResults\s*=\s*(\{[\s\S]*?\});")
TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")

logger = logging.getLogger("scraper.harvester")
logger.setLevel(logging.INFO)


def extract_data_attribute_ids(html):
    """Ids carried by `data-ds-appid` attributes (bundles list several, comma separated)."""
    soup = BeautifulSoup(html, "lxml")
    found = set()
    for el in soup.select("[data-ds-appid]"):
        for part in el.get("data-ds-appid", "").split(","):
            part = part.strip()
            if part.isascii() and part.isdigit():
                found.add(part)
    return found


def extract_link_ids(html):
    """Ids taken from any href pointing at a /app/<id> detail path."""
    soup = BeautifulSoup(html, "lxml")
    found = set()
    for el in soup.find_all(href=True):
        m = APP_LINK_RE.search(el["href"])
        if m:
            found.add(m.group(1))
    return found


def extract_embedded_json_ids(html):
    """
    Read the keys of the inline `rgSearchResults = {...};` script variable.

    The blob is a JavaScript object literal, so trailing commas before a
    closing bracket are stripped before it is handed to the JSON parser.
    A blob that still fails to parse yields no ids.

    Args:
        html (str): Raw search page markup

    Returns:
        set[str]: Top-level keys that are canonical decimal integers
    """
    m = SEARCH_RESULTS_RE.search(html)
    if not m:
        return set()
    blob = TRAILING_COMMA_RE.sub(r"\1", m.group(1).strip())
    try:
        data = json.loads(blob)
    except ValueError as e:
        logger.debug(f"Embedded search results not parseable: {e}")
        return set()
    if not isinstance(data, dict):
        return set()
    return {k for k in data if is_canonical_integer(k)}


EXTRACTORS = (
    extract_data_attribute_ids,
    extract_link_ids,
    extract_embedded_json_ids,
)


def extract_identifiers(html):
    """
    Run every extraction heuristic over a search page and union the results.

    Each heuristic is independent: one raising is logged and the others still
    contribute. Only ids whose integer value exceeds 10 are kept.

    Args:
        html (str): Search results page body, treated as opaque text

    Returns:
        set[str]: Valid identifiers found by any heuristic
    """
    ids = set()
    for extractor in EXTRACTORS:
        try:
            ids |= extractor(html)
        except Exception as e:
            logger.warning(f"Extractor {extractor.__name__} failed: {e}")
    return {i for i in ids if is_valid_identifier(i)}


class Harvester:
    """Collects discounted app ids from the store's search result pages."""

    def __init__(
        self,
        client,
        region=REGION,
        language=LANGUAGE,
        max_ids=MAX_PROMOTIONS_TO_CHECK,
        mode=HARVEST_MODE,
        delay=HARVEST_DELAY,
    ):
        if mode not in ("concurrent", "sequential"):
            raise ValueError(f"Unknown harvest mode: {mode}")
        self.client = client
        self.region = region
        self.language = language
        self.max_ids = max_ids
        self.mode = mode
        self.delay = delay

    def search_params(self, term):
        return {
            "cc": self.region,
            "l": self.language,
            "specials": 1,
            "term": term,
            "page": 1,
        }

    async def search(self, term):
        """
        Query one search term and extract the ids from its results page.

        Args:
            term (str): Free-text term; the empty string means no filter

        Returns:
            list[str]: Identifiers in ascending numeric order (deterministic
                for a given page)

        Raises:
            httpx.HTTPError: On timeout, network failure or non-2xx status
        """
        resp = await fetch(self.client, SEARCH_URL, params=self.search_params(term))
        ids = sorted(extract_identifiers(resp.text), key=int)
        logger.info(f"  {term or 'general'}: {len(ids)} app ids")
        return ids

    def _log_failure(self, term, error):
        label = term or "general"
        if is_rate_limited(error):
            logger.warning(
                f"Rate limit hit while searching '{label}', skipping term. "
                "Wait a few minutes before the next run."
            )
        else:
            logger.error(f"Search for '{label}' failed: {error}")

    async def harvest(self, terms):
        """
        Build the bounded identifier set for one pipeline run.

        Queries each term and unions the extracted ids. A failing term is
        logged and skipped and never aborts the harvest; rate limiting (429)
        is reported separately from other failures.

        Args:
            terms (list[str]): Search terms, processed in the given order

        Returns:
            list[str]: Unique identifiers, at most `max_ids`, in term order.
                Empty when every term failed or nothing was found.

        Modes:
            - concurrent: all terms in flight at once; merged in term order
              and truncated to the cap afterwards.
            - sequential: one term at a time with `delay` seconds between
              terms, stopping as soon as the cap is reached, so earlier
              terms take priority.
        """
        logger.info(f"Searching {len(terms)} terms for discounted apps ({self.mode})")
        if self.mode == "concurrent":
            ids = await self._harvest_concurrent(terms)
        else:
            ids = await self._harvest_sequential(terms)
        ids = ids[: self.max_ids]
        logger.info(f"Total: {len(ids)} unique app ids")
        return ids

    async def _harvest_concurrent(self, terms):
        results = await asyncio.gather(
            *(self.search(t) for t in terms), return_exceptions=True
        )
        seen = {}
        for term, result in zip(terms, results):
            if isinstance(result, BaseException):
                self._log_failure(term, result)
                continue
            for app_id in result:
                seen.setdefault(app_id, None)
        return list(seen)

    async def _harvest_sequential(self, terms):
        seen = {}
        for i, term in enumerate(terms):
            if i and self.delay:
                await asyncio.sleep(self.delay)
            try:
                result = await self.search(term)
            except httpx.HTTPError as e:
                self._log_failure(term, e)
                continue
            for app_id in result:
                seen.setdefault(app_id, None)
            if len(seen) >= self.max_ids:
                break
        return list(seen)
