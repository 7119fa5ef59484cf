# scraper/models.py
from datetime import datetime, timezone
from typing import List

from pydantic import BaseModel, ConfigDict, Field, model_validator

# ids at or below this value are reserved/sentinel entries on the store
MIN_IDENTIFIER = 10


def is_canonical_integer(value):
    """True for ASCII decimal strings without leading zeros ("123", not "0123")."""
    if not isinstance(value, str) or not (value.isascii() and value.isdigit()):
        return False
    return value == str(int(value))


def is_valid_identifier(value):
    """Return True for canonical decimal strings whose integer value exceeds 10."""
    return is_canonical_integer(value) and int(value) > MIN_IDENTIFIER


class PromotionRecord(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    initial_price: str = Field(..., alias="initialPrice")
    final_price: str = Field(..., alias="finalPrice")
    discount_percent: int = Field(..., alias="discountPercent", gt=0, le=100)
    link: str
    image_url: str = Field(..., alias="imageUrl")
    genres: List[str] = Field(default_factory=list)


class Snapshot(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    last_update: datetime = Field(..., alias="lastUpdate")
    total: int
    promotions: List[PromotionRecord]

    @model_validator(mode="after")
    def check_total(self):
        if self.total != len(self.promotions):
            raise ValueError(
                f"total={self.total} does not match {len(self.promotions)} promotions"
            )
        return self

    @classmethod
    def from_records(cls, records):
        records = list(records)
        return cls(
            last_update=datetime.now(timezone.utc),
            total=len(records),
            promotions=records,
        )

    def to_document(self):
        """JSON-compatible dict in the camelCase layout served by the API."""
        return self.model_dump(mode="json", by_alias=True)
