# scraper/details.py
import logging
import os

import httpx
from dotenv import load_dotenv
from pydantic import ValidationError

from .models import PromotionRecord
from .utils import fetch

load_dotenv()
DETAILS_URL = os.getenv(
    "STEAM_DETAILS_URL", "https://store.steampowered.com/api/appdetails"
)
REGION = os.getenv("STEAM_REGION", "br")
LANGUAGE = os.getenv("STEAM_LANGUAGE", "brazilian")
CURRENCY = os.getenv("STEAM_CURRENCY", "20")

STORE_APP_URL = "https://store.steampowered.com/app/{app_id}/"
FALLBACK_IMAGE_URL = "https://cdn.akamai.steamstatic.com/steam/apps/{app_id}/header.jpg"
IMAGE_FIELDS = ("header_image", "capsule_image", "capsule_imagev5")

logger = logging.getLogger("scraper.details")
logger.setLevel(logging.INFO)


def pick_image(app_id, data):
    for field in IMAGE_FIELDS:
        if data.get(field):
            return data[field]
    return FALLBACK_IMAGE_URL.format(app_id=app_id)


def normalize_genres(raw):
    """
    Flatten the genre field into display labels.

    The store sends genres either as a list of objects or as a mapping of
    objects keyed by genre id. Each entry contributes its `description`, or
    itself when it is already a plain string. Empty labels are dropped.

    Args:
        raw (list | dict | None): The `genres` value of an app entry

    Returns:
        list[str]: Genre labels in their original order
    """
    if isinstance(raw, dict):
        entries = list(raw.values())
    elif isinstance(raw, list):
        entries = raw
    else:
        return []
    genres = []
    for genre in entries:
        label = genre.get("description") if isinstance(genre, dict) else genre
        if isinstance(label, str) and label.strip():
            genres.append(label)
    return genres


def parse_app_details(app_id, payload):
    """
    Turn one appdetails response into a PromotionRecord.

    Args:
        app_id (str): Identifier the request was made for
        payload (dict): Decoded response body keyed by identifier

    Returns:
        PromotionRecord or None: None when the entry is missing, flagged as
            unsuccessful, has no price data (free or not sold) or is not
            discounted

    Raises:
        pydantic.ValidationError: If the entry carries malformed fields
    """
    entry = payload.get(app_id) if isinstance(payload, dict) else None
    if not isinstance(entry, dict) or not entry.get("success"):
        return None
    data = entry.get("data")
    if not isinstance(data, dict):
        return None
    price = data.get("price_overview")
    if not isinstance(price, dict) or not price:
        return None
    discount = price.get("discount_percent")
    if not isinstance(discount, int) or isinstance(discount, bool) or discount <= 0:
        return None

    return PromotionRecord(
        name=data.get("name"),
        initial_price=price.get("initial_formatted"),
        final_price=price.get("final_formatted"),
        discount_percent=discount,
        link=STORE_APP_URL.format(app_id=app_id),
        image_url=pick_image(app_id, data),
        genres=normalize_genres(data.get("genres")),
    )


class DetailFetcher:
    """Looks up pricing for a single app id."""

    def __init__(self, client, region=REGION, language=LANGUAGE, currency=CURRENCY):
        self.client = client
        self.region = region
        self.language = language
        self.currency = currency

    def detail_params(self, app_id):
        return {
            "appids": app_id,
            "cc": self.region,
            "l": self.language,
            "currency": self.currency,
        }

    async def fetch_detail(self, app_id):
        """
        Fetch one app's details and return its promotion, if any.

        Every failure is contained here: a 400 for a malformed id, other
        non-2xx responses, timeouts, network errors, undecodable bodies and
        invalid entries all come back as None so one bad item never affects
        the rest of a batch.

        Args:
            app_id (str): Store identifier

        Returns:
            PromotionRecord or None
        """
        try:
            resp = await fetch(self.client, DETAILS_URL, params=self.detail_params(app_id))
            return parse_app_details(app_id, resp.json())
        except httpx.HTTPStatusError as e:
            logger.debug(f"Details for {app_id} returned {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.warning(f"Details request for {app_id} failed: {e!r}")
        except ValidationError as e:
            logger.warning(f"Details for {app_id} are malformed: {e.error_count()} errors")
        except ValueError as e:
            logger.warning(f"Details for {app_id} are not valid JSON: {e}")
        return None
