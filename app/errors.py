from __future__ import annotations


class QuoteAcquisitionError(Exception):
    """Base class for failures raised while acquiring a quote."""


class BlockedError(QuoteAcquisitionError):
    """Upstream bot mitigation served a challenge instead of the trading page."""


class NavigationError(QuoteAcquisitionError):
    """A navigation step failed. Carried in NavigationOutcome, never raised."""

    def __init__(self, step: str, reason: str) -> None:
        super().__init__(f"{step}: {reason}")
        self.step = step
        self.reason = reason


class NoQuoteFoundError(QuoteAcquisitionError):
    pass


class SessionResourceError(QuoteAcquisitionError):
    """Releasing one browser resource failed. Logged by release, never raised."""

    def __init__(self, resource: str, reason: str) -> None:
        super().__init__(f"{resource}: {reason}")
        self.resource = resource
        self.reason = reason


class WatchdogTimeout(QuoteAcquisitionError):
    def __init__(self, attempt_id: int, deadline_sec: float) -> None:
        super().__init__(f"attempt {attempt_id} still in flight after {deadline_sec}s")
        self.attempt_id = attempt_id
        self.deadline_sec = deadline_sec
