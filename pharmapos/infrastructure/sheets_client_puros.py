from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitRetry:
    """Reintentos ante cuota agotada de Google Sheets (HTTP 429 y similares)."""

    max_attempts: int = 5
    base_backoff_seconds: float = 1.0
    max_backoff_seconds: float = 32.0

    def backoff_seconds(self, attempt: int) -> float:
        return min(self.max_backoff_seconds, self.base_backoff_seconds * (2 ** (attempt - 1)))

    def allows_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts
