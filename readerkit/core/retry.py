"""Polling policy for content the server is still rendering."""

from __future__ import annotations

from dataclasses import dataclass

from readerkit.providers.content_types import ContentStatus

# Requests per item before giving up on PROCESSING content
MAX_ATTEMPTS = 7
# Seconds per attempt; attempt n waits n * BASE_DELAY before the next one
BASE_DELAY = 2.0


@dataclass(frozen=True)
class PendingRetry:
    """An item waiting for its next fetch attempt."""

    item_id: str
    attempt: int = 1

    def next(self) -> "PendingRetry":
        return PendingRetry(item_id=self.item_id, attempt=self.attempt + 1)


@dataclass(frozen=True)
class RetryPolicy:
    """Linear backoff with a bounded number of attempts.

    Only PROCESSING is retried. SUCCEEDED/UNKNOWN and FAILED are terminal.
    """

    max_attempts: int = MAX_ATTEMPTS
    base_delay: float = BASE_DELAY

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must not be negative")

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after `attempt` before making the next one."""
        return attempt * self.base_delay

    def exhausted(self, attempt: int) -> bool:
        return attempt >= self.max_attempts

    def should_retry(self, status: ContentStatus, attempt: int) -> bool:
        return status == ContentStatus.PROCESSING and not self.exhausted(attempt)
