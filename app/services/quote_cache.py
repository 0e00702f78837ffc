from __future__ import annotations

from pydantic import BaseModel

from app.schemas.quote import Quote


class CacheEntry(BaseModel):
    quote: Quote

    def age_sec(self, now: float) -> float:
        return max(now - self.quote.observed_at, 0.0)

    def is_fresh(self, now: float, stale_after_sec: float) -> bool:
        return self.age_sec(now) < stale_after_sec


class QuoteCache:
    """Holds the last successfully acquired quote. Never expires it."""

    def __init__(self) -> None:
        self._entry: CacheEntry | None = None

    def put(self, quote: Quote) -> None:
        self._entry = CacheEntry(quote=quote)

    def get(self) -> CacheEntry | None:
        return self._entry
