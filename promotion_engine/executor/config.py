#promotion_engine/executor/config.py
from dataclasses import dataclass


@dataclass(frozen=True)
class HealthCheckPolicy:
    max_attempts: int = 10
    initial_delay_seconds: float = 2.0
    max_delay_seconds: float = 30.0
    backoff_multiplier: float = 2.0

    required_consecutive: int = 3
    deadline_seconds: float = 300.0

    def delay_for(self, attempt: int) -> float:
        """Delay after the given (0-based) attempt: initial * multiplier**attempt, capped."""
        delay = self.initial_delay_seconds * (self.backoff_multiplier ** attempt)
        return min(delay, self.max_delay_seconds)
