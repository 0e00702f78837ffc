from __future__ import annotations

import math
import re
import time
from typing import Any, Callable, Iterable, Optional

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from app.config.settings import Settings
from app.errors import NoQuoteFoundError
from app.schemas.quote import Quote

METHOD_GLOBAL_STATE = "gon.ticker.last"
METHOD_TRADES_TABLE = "trades-table"
METHOD_TRADES_TEXT = "trades-text"

PRICE_PATTERN = re.compile(r"(\d{2,3}\.\d{1,2})")
# leading numeric prefix, the part of the value parseFloat would read
LEADING_NUMBER = re.compile(r"\s*([-+]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][-+]?\d+)?)")


def parse_positive_price(raw: Any) -> Optional[float]:
    if raw is None or isinstance(raw, bool):
        return None
    match = LEADING_NUMBER.match(str(raw))
    if match is None:
        return None
    value = float(match.group(1))
    if not math.isfinite(value) or value <= 0:
        return None
    return value


class PriceBand:
    """Plausible price range for the instrument, inclusive on both ends."""

    def __init__(self, low: float, high: float) -> None:
        self.low = low
        self.high = high

    def contains(self, value: float) -> bool:
        return self.low <= value <= self.high

    def first_match(self, text: str) -> Optional[float]:
        match = PRICE_PATTERN.search(text)
        if match is None:
            return None
        value = float(match.group(1))
        return value if self.contains(value) else None


class ExtractionStrategy:
    method = "unknown"

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock

    def _quote(self, price: float) -> Quote:
        return Quote(price=price, observed_at=self._clock(), method=self.method)

    async def extract(self, page: Any) -> Optional[Quote]:
        raise NotImplementedError


class GlobalStateStrategy(ExtractionStrategy):
    """Reads ``window.gon.ticker.last`` once the app has populated it."""

    method = METHOD_GLOBAL_STATE

    READY_SCRIPT = """() => {
        try {
            return Boolean(window.gon && window.gon.ticker && window.gon.ticker.last);
        } catch (e) {
            return false;
        }
    }"""

    PROBE_SCRIPT = """() => {
        try {
            if (!window.gon) return {gon: false, keys: [], ticker_keys: []};
            const ticker = window.gon.ticker;
            return {
                gon: true,
                keys: Object.keys(window.gon),
                ticker_keys: ticker ? Object.keys(ticker) : [],
            };
        } catch (e) {
            return {gon: false, error: String(e && e.message)};
        }
    }"""

    READ_SCRIPT = """() => {
        try {
            if (!window.gon || !window.gon.ticker) return null;
            const last = window.gon.ticker.last;
            return last === undefined ? null : last;
        } catch (e) {
            return null;
        }
    }"""

    def __init__(self, *, wait_sec: float, grace_sec: float, clock: Callable[[], float] = time.time) -> None:
        super().__init__(clock)
        self.wait_sec = wait_sec
        self.grace_sec = grace_sec

    async def extract(self, page: Any) -> Optional[Quote]:
        try:
            await page.wait_for_function(self.READY_SCRIPT, timeout=self.wait_sec * 1000)
        except PlaywrightTimeoutError:
            print(f"[EXTRACT][state_wait_timeout] wait_sec={self.wait_sec}", flush=True)
            await page.wait_for_timeout(self.grace_sec * 1000)
            probe = await page.evaluate(self.PROBE_SCRIPT)
            print(f"[EXTRACT][state_probe] result={probe}", flush=True)

        raw = await page.evaluate(self.READ_SCRIPT)
        price = parse_positive_price(raw)
        if price is None:
            print(f"[EXTRACT][state_unusable] raw={raw!r}", flush=True)
            return None
        return self._quote(price)


class TradesTableStrategy(ExtractionStrategy):
    """First data row of the table around the recent-trades heading."""

    method = METHOD_TRADES_TABLE
    MAX_LABEL_TEXT_LENGTH = 100

    # returns the first-data-row cell texts for every qualifying ancestor, nearest first
    ROW_CELLS_SCRIPT = """(args) => {
        const anchor = Array.from(document.querySelectorAll('*')).find(
            (el) => el.textContent
                && el.textContent.includes(args.label)
                && el.textContent.length < args.maxLength
        );
        if (!anchor) return null;
        const candidates = [];
        let container = anchor.parentElement;
        while (container && container !== document.body) {
            const rows = container.querySelectorAll('tr, [class*="row"], [class*="trade"]');
            if (rows.length > 1) {
                const cells = rows[1].querySelectorAll('td, [class*="cell"], div, span');
                candidates.push(Array.from(cells, (cell) => (cell.textContent || '').trim()));
            }
            container = container.parentElement;
        }
        return candidates;
    }"""

    def __init__(self, *, label: str, band: PriceBand, clock: Callable[[], float] = time.time) -> None:
        super().__init__(clock)
        self.label = label
        self.band = band

    def pick_price(self, candidates: Iterable[Iterable[str]]) -> Optional[float]:
        for cells in candidates:
            for text in cells:
                value = self.band.first_match(text or "")
                if value is not None:
                    return value
        return None

    async def extract(self, page: Any) -> Optional[Quote]:
        candidates = await page.evaluate(
            self.ROW_CELLS_SCRIPT,
            {"label": self.label, "maxLength": self.MAX_LABEL_TEXT_LENGTH},
        )
        if not candidates:
            print("[EXTRACT][table_not_found]", flush=True)
            return None
        price = self.pick_price(candidates)
        if price is None:
            return None
        return self._quote(price)


class TradesTextStrategy(ExtractionStrategy):
    method = METHOD_TRADES_TEXT

    BODY_TEXT_SCRIPT = "() => (document.body ? document.body.innerText : '')"

    def __init__(self, *, label: str, band: PriceBand, clock: Callable[[], float] = time.time) -> None:
        super().__init__(clock)
        self.label = label
        self.band = band

    def pick_price(self, body_text: str) -> Optional[float]:
        index = body_text.find(self.label)
        if index == -1:
            return None
        return self.band.first_match(body_text[index + len(self.label):])

    async def extract(self, page: Any) -> Optional[Quote]:
        body_text = await page.evaluate(self.BODY_TEXT_SCRIPT)
        price = self.pick_price(body_text or "")
        if price is None:
            return None
        return self._quote(price)


class ExtractionChain:
    """Runs strategies in priority order; the first quote wins."""

    def __init__(self, strategies: list[ExtractionStrategy]) -> None:
        self.strategies = strategies

    async def extract(self, page: Any) -> Quote:
        for strategy in self.strategies:
            try:
                quote = await strategy.extract(page)
            except Exception as exc:
                # one strategy breaking must not stop the others
                print(f"[EXTRACT][strategy_error] method={strategy.method} error={exc}", flush=True)
                continue
            if quote is not None:
                print(f"[EXTRACT][found] method={quote.method} price={quote.price_text}", flush=True)
                return quote
            print(f"[EXTRACT][miss] method={strategy.method}", flush=True)
        raise NoQuoteFoundError("price not found on page: every extraction method came up empty")


def build_extraction_chain(settings: Settings, clock: Callable[[], float] = time.time) -> ExtractionChain:
    band = PriceBand(settings.QUOTE_PRICE_MIN, settings.QUOTE_PRICE_MAX)
    label = settings.QUOTE_RECENT_TRADES_LABEL
    return ExtractionChain(
        [
            GlobalStateStrategy(
                wait_sec=settings.QUOTE_STATE_WAIT_SEC,
                grace_sec=settings.QUOTE_STATE_GRACE_SEC,
                clock=clock,
            ),
            TradesTableStrategy(label=label, band=band, clock=clock),
            TradesTextStrategy(label=label, band=band, clock=clock),
        ]
    )
