from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Literal, Union

from pydantic import BaseModel, field_validator


def format_timestamp(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat().replace("+00:00", "Z")


class Quote(BaseModel):
    price: float
    observed_at: float
    method: str

    @field_validator("price")
    @classmethod
    def _price_must_be_positive(cls, value: float) -> float:
        if not math.isfinite(value) or value <= 0:
            raise ValueError(f"price must be a finite positive number, got {value!r}")
        return value

    @property
    def price_text(self) -> str:
        return f"{self.price:.2f}"

    @property
    def updated_at(self) -> str:
        return format_timestamp(self.observed_at)


class QuoteSuccess(BaseModel):
    status: Literal["success"] = "success"
    price: str
    updated_at: str
    method: str
    cached: bool = False

    @classmethod
    def from_quote(cls, quote: Quote, *, cached: bool) -> "QuoteSuccess":
        return cls(
            price=quote.price_text,
            updated_at=quote.updated_at,
            method=quote.method,
            cached=cached,
        )


class QuoteBusy(BaseModel):
    status: Literal["busy"] = "busy"
    message: str = "quote acquisition already in progress, retry in a few seconds"


class QuoteFailure(BaseModel):
    status: Literal["failure"] = "failure"
    message: str


QuoteResult = Union[QuoteSuccess, QuoteBusy, QuoteFailure]
