from __future__ import annotations

import time
from typing import Callable

from app.errors import BlockedError
from app.integrations.browser_session import BrowserSessionManager
from app.schemas.quote import Quote, QuoteBusy, QuoteFailure, QuoteResult, QuoteSuccess
from app.services.extraction import ExtractionChain
from app.services.quote_cache import QuoteCache
from app.services.single_flight import IN_FLIGHT, SingleFlightGuard


class QuoteAcquisitionService:
    """Single-flight browser acquisition with a short-lived cache in front."""

    def __init__(
        self,
        *,
        session_manager: BrowserSessionManager,
        extraction_chain: ExtractionChain,
        quote_cache: QuoteCache,
        guard: SingleFlightGuard,
        stale_after_sec: float = 30.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.session_manager = session_manager
        self.extraction_chain = extraction_chain
        self.quote_cache = quote_cache
        self.guard = guard
        self.stale_after_sec = stale_after_sec
        self._clock = clock

        self.acquisitions = 0
        self.successes = 0
        self.failures = 0
        self.blocked = 0
        self.busy_cache_hits = 0
        self.busy_rejections = 0
        self.last_method: str | None = None
        self.last_error: str | None = None

    def _serve_busy(self) -> QuoteResult:
        now = self._clock()
        entry = self.quote_cache.get()
        if entry is not None and entry.is_fresh(now, self.stale_after_sec):
            self.busy_cache_hits += 1
            print(
                f"[QUOTE][busy_cache_hit] price={entry.quote.price_text} age_sec={entry.age_sec(now):.1f}",
                flush=True,
            )
            return QuoteSuccess.from_quote(entry.quote, cached=True)
        self.busy_rejections += 1
        print("[QUOTE][busy_rejected] cache=unavailable", flush=True)
        return QuoteBusy()

    async def _acquire(self) -> Quote:
        session = await self.session_manager.acquire_session()
        try:
            await self.session_manager.load_trading_page(session)
            return await self.extraction_chain.extract(session.page)
        finally:
            await self.session_manager.release_session(session)

    async def get_quote(self) -> QuoteResult:
        admission = self.guard.try_enter()
        if admission is None:
            return self._serve_busy()

        self.acquisitions += 1
        print(f"[QUOTE][acquire_start] attempt_id={admission.attempt_id}", flush=True)
        try:
            quote = await self._acquire()
        except BlockedError as exc:
            self.blocked += 1
            return self._fail(admission.attempt_id, exc)
        except Exception as exc:
            return self._fail(admission.attempt_id, exc)
        finally:
            self.guard.exit(admission.attempt_id)

        self.quote_cache.put(quote)
        self.successes += 1
        self.last_method = quote.method
        self.last_error = None
        print(
            f"[QUOTE][acquire_ok] attempt_id={admission.attempt_id} price={quote.price_text} method={quote.method}",
            flush=True,
        )
        return QuoteSuccess.from_quote(quote, cached=False)

    def _fail(self, attempt_id: int, exc: Exception) -> QuoteFailure:
        self.failures += 1
        message = str(exc) or type(exc).__name__
        self.last_error = message
        print(
            f"[QUOTE][acquire_failed] attempt_id={attempt_id} error_type={type(exc).__name__} error={message}",
            flush=True,
        )
        return QuoteFailure(message=message)

    def metrics(self) -> dict[str, int | float | bool | str | None]:
        now = self._clock()
        entry = self.quote_cache.get()
        guard_state = self.guard.status()
        return {
            "acquisitions": self.acquisitions,
            "successes": self.successes,
            "failures": self.failures,
            "blocked": self.blocked,
            "busy_cache_hits": self.busy_cache_hits,
            "busy_rejections": self.busy_rejections,
            "last_method": self.last_method,
            "last_error": self.last_error,
            "in_flight": guard_state.state == IN_FLIGHT,
            "watchdog_resets": guard_state.watchdog_resets,
            "cache_age_sec": round(entry.age_sec(now), 3) if entry is not None else None,
            "cache_fresh": entry.is_fresh(now, self.stale_after_sec) if entry is not None else False,
        }
