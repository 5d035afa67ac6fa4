from dataclasses import dataclass

from GutSafe_Sync.gs_shared import config


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential retry delay: base * multiplier**min(attempts, max_doublings), capped."""
    base_s:        float = config.BACKOFF_BASE_SECONDS
    multiplier:    float = config.BACKOFF_MULTIPLIER
    cap_s:         float = config.BACKOFF_CAP_SECONDS
    max_doublings: int = config.BACKOFF_MAX_DOUBLINGS

    def delay(self, attempts: int) -> float:
        exponent = min(max(attempts, 0), self.max_doublings)
        return min(self.base_s * self.multiplier ** exponent, self.cap_s)

    def delay_ms(self, attempts: int) -> int:
        return int(self.delay(attempts) * 1000)
