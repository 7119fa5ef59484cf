# scraper/utils.py
import os

import httpx
from dotenv import load_dotenv
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

load_dotenv()

REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "15"))
FETCH_RETRIES = int(os.getenv("FETCH_RETRIES", "2"))

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "pt-BR,pt;q=0.9,en-US;q=0.8,en;q=0.7",
}


def build_client(timeout=REQUEST_TIMEOUT, **kwargs):
    """
    Create the shared async HTTP client used for store requests.

    Every request carries a browser-like header set, since the search endpoint
    is scraped HTML rather than a documented API and bare clients risk being
    blocked or served a degraded page.

    Args:
        timeout (float): Per-request deadline in seconds. Defaults to
            REQUEST_TIMEOUT (15s).
        **kwargs: Forwarded to httpx.AsyncClient (e.g. transport for tests).

    Returns:
        httpx.AsyncClient: Client with browser headers and redirects enabled
    """
    headers = dict(BROWSER_HEADERS)
    headers.update(kwargs.pop("headers", {}))
    return httpx.AsyncClient(
        timeout=timeout,
        headers=headers,
        follow_redirects=True,
        **kwargs,
    )


def chunked(items, size):
    """
    Split a sequence into consecutive lists of at most `size` items.

    Args:
        items (Iterable): Items to partition, order is preserved
        size (int): Maximum batch length, must be >= 1

    Returns:
        list[list]: Batches in original order; empty list for empty input

    Raises:
        ValueError: If size is smaller than 1
    """
    if size < 1:
        raise ValueError("batch size must be >= 1")
    items = list(items)
    return [items[i : i + size] for i in range(0, len(items), size)]


def is_rate_limited(exc):
    """True when an exception carries an HTTP 429 response."""
    return (
        isinstance(exc, httpx.HTTPStatusError)
        and exc.response.status_code == 429
    )


def network_retry(**tenacity_kwargs):
    """
    Create a tenacity retry decorator for transport-level network failures.

    Only connection problems and timeouts (httpx.TransportError) are retried;
    HTTP status errors such as 400, 404 or 429 surface immediately so callers
    can classify them.

    Args:
        **tenacity_kwargs: Optional keyword arguments
            - attempts (int): Maximum number of attempts. Defaults to FETCH_RETRIES.

    Returns:
        Callable: Configured retry decorator. The last exception is re-raised
        once attempts are exhausted.

    Example:
        @network_retry(attempts=3)
        async def get_page(self, url, params):
            return await self.client.get(url, params=params)
    """
    return retry(
        stop=stop_after_attempt(tenacity_kwargs.get("attempts", FETCH_RETRIES)),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )


@network_retry()
async def fetch(client, url, params=None):
    """GET a store URL, raising httpx.HTTPStatusError on non-2xx responses."""
    resp = await client.get(url, params=params)
    resp.raise_for_status()
    return resp
