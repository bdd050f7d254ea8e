import random
from dataclasses import dataclass


def compute_backoff_seconds(attempt: int, base: int = 2, cap: int = 60) -> int:
    # exponential backoff with jitter
    exp = min(cap, base * (2 ** max(0, attempt - 1)))
    jitter = random.randint(0, min(30, exp // 3))
    return exp + jitter


@dataclass(frozen=True)
class RetryPolicy:
    """Stage-level retry bound for transient infrastructure errors."""
    max_attempts: int = 3
    base_seconds: int = 2
    cap_seconds: int = 60

    def backoff_seconds(self, attempt: int) -> int:
        return compute_backoff_seconds(attempt, base=self.base_seconds, cap=self.cap_seconds)

    def exhausted(self, attempt: int) -> bool:
        return attempt >= self.max_attempts
