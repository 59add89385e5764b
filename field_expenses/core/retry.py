"""
Retry policy for calls to external services.
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Type, TypeVar

T = TypeVar("T")


def _never(exc: BaseException) -> bool:
    return False


@dataclass
class RetryPolicy:
    """
    Retry a call a fixed number of times.

    Args:
        max_attempts: Total attempts, including the first one
        delay: Seconds to wait before the second attempt
        backoff: "fixed" waits ``delay`` every time, "linear" waits
            ``delay * attempt``
        retry_on: Exception types that are worth retrying
        give_up: Predicate for errors that must surface immediately
            (bad credentials, missing schema)
    """
    max_attempts: int = 3
    delay: float = 1.0
    backoff: str = "fixed"
    retry_on: Tuple[Type[BaseException], ...] = (Exception,)
    give_up: Callable[[BaseException], bool] = _never
    sleep: Callable[[float], None] = time.sleep

    def wait_time(self, attempt: int) -> float:
        if self.backoff == "linear":
            return self.delay * attempt
        return self.delay

    def call(self, fn: Callable[[], T], label: Optional[str] = None) -> T:
        """Run ``fn`` under this policy, re-raising the last error when attempts run out."""
        attempt = 1
        while True:
            try:
                return fn()
            except self.retry_on as e:
                if self.give_up(e) or attempt >= self.max_attempts:
                    raise
                wait = self.wait_time(attempt)
                print(f"[WARN] {label or 'Call'} failed (attempt {attempt}/{self.max_attempts}): {e}; "
                      f"retrying in {wait:g}s")
                self.sleep(wait)
                attempt += 1
