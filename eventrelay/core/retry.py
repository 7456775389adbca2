"""Per-batch delivery failure tracking."""

import logging
from enum import Enum

from eventrelay.core.config import DEFAULT_RETRY_LIMIT


class RetryDecision(Enum):
    """What the tracker concluded from one delivery outcome.

    CLEARED: Delivery succeeded, any record for the fingerprint is gone.
    RETRY: Delivery failed below the limit, the batch stays tracked.
    PERMANENTLY_FAILED: The limit was reached and the record was removed.
        The events stay in the store and are re-batched under a fresh
        fingerprint on a later cycle.
    """

    CLEARED = "cleared"
    RETRY = "retry"
    PERMANENTLY_FAILED = "permanently_failed"


class RetryTracker:
    """Counts failed delivery attempts per batch fingerprint.

    Args:
        retry_limit: Failures after which a fingerprint stops being tracked.
    """

    def __init__(self, retry_limit: int = DEFAULT_RETRY_LIMIT) -> None:
        if retry_limit < 1:
            raise ValueError(f"retry_limit must be >= 1, got {retry_limit}")
        self.retry_limit = retry_limit
        self._attempts: dict[str, int] = {}
        self._permanent_failures = 0
        self._log = logging.getLogger("eventrelay.retry")

    def on_outcome(self, fingerprint: str, success: bool, error: str | None = None) -> RetryDecision:
        """Record one delivery outcome for fingerprint."""
        if success:
            self._attempts.pop(fingerprint, None)
            return RetryDecision.CLEARED

        attempts = self._attempts.get(fingerprint, 0) + 1
        if attempts >= self.retry_limit:
            self._attempts.pop(fingerprint, None)
            self._permanent_failures += 1
            self._log.error(
                f"Batch failed after {self.retry_limit} attempts, marking as permanently failed",
                extra={"fingerprint": fingerprint, "attempt": attempts, "error": error},
            )
            return RetryDecision.PERMANENTLY_FAILED

        self._attempts[fingerprint] = attempts
        self._log.warning(
            f"Failed to send batch (attempt {attempts}/{self.retry_limit}), will retry later",
            extra={"fingerprint": fingerprint, "attempt": attempts, "error": error},
        )
        return RetryDecision.RETRY

    def attempts(self, fingerprint: str) -> int:
        """Current failure count for fingerprint (0 if untracked)."""
        return self._attempts.get(fingerprint, 0)

    def snapshot(self) -> dict[str, int]:
        """Copy of all tracked fingerprints and their counts."""
        return dict(self._attempts)

    @property
    def permanent_failures(self) -> int:
        return self._permanent_failures

    def __len__(self) -> int:
        return len(self._attempts)

    def __contains__(self, fingerprint: object) -> bool:
        return fingerprint in self._attempts
