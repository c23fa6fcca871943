from __future__ import annotations

import random
from enum import Enum
from typing import Callable


RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})
DEFAULT_MAX_RETRIES = 3

JITTER_LOW = 0.75
JITTER_HIGH = 1.25

JitterFn = Callable[[float, float], float]


class RetryState(str, Enum):
    ATTEMPTING = "attempting"
    BACKOFF = "backoff"
    SUCCEEDED = "succeeded"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_FATAL = "failed_fatal"
    CANCELLED = "cancelled"


class AttemptResult(str, Enum):
    OK = "ok"
    RETRYABLE = "retryable"
    FATAL = "fatal"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset(
    {
        RetryState.SUCCEEDED,
        RetryState.FAILED_RETRYABLE,
        RetryState.FAILED_FATAL,
        RetryState.CANCELLED,
    }
)


def is_retryable_status(status_code: int) -> bool:
    return int(status_code) in RETRYABLE_STATUSES


def backoff_with_jitter(attempt: int, *, jitter: JitterFn = random.uniform) -> float:
    """Delay in seconds before retrying after attempt `attempt` (0-based).

    Base is 2**attempt seconds, scaled by a factor drawn from [0.75, 1.25].
    """

    base = float(2 ** max(0, int(attempt)))
    return base * float(jitter(JITTER_LOW, JITTER_HIGH))


class RetryMachine:
    """Bounded retry as explicit states.

    Attempting(n) moves to Succeeded, FailedFatal or Cancelled on a terminal
    result. A retryable result moves to Backoff(n), unless n == max_retries,
    which is the last attempt and moves to FailedRetryable. Backoff(n) moves
    to Attempting(n + 1) or Cancelled.
    """

    def __init__(self, max_retries: int = DEFAULT_MAX_RETRIES, *, jitter: JitterFn = random.uniform) -> None:
        self.max_retries = max(0, int(max_retries))
        self.attempt = 0
        self.state = RetryState.ATTEMPTING
        self._jitter = jitter

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    def record(self, result: AttemptResult) -> RetryState:
        if self.state is not RetryState.ATTEMPTING:
            raise RuntimeError(f"cannot record an attempt result in state {self.state.value}")

        if result is AttemptResult.OK:
            self.state = RetryState.SUCCEEDED
        elif result is AttemptResult.FATAL:
            self.state = RetryState.FAILED_FATAL
        elif result is AttemptResult.CANCELLED:
            self.state = RetryState.CANCELLED
        elif self.attempt >= self.max_retries:
            self.state = RetryState.FAILED_RETRYABLE
        else:
            self.state = RetryState.BACKOFF
        return self.state

    def next_delay(self) -> float:
        if self.state is not RetryState.BACKOFF:
            raise RuntimeError(f"no backoff delay in state {self.state.value}")
        return backoff_with_jitter(self.attempt, jitter=self._jitter)

    def finish_backoff(self, *, cancelled: bool = False) -> RetryState:
        if self.state is not RetryState.BACKOFF:
            raise RuntimeError(f"cannot finish backoff in state {self.state.value}")
        if cancelled:
            self.state = RetryState.CANCELLED
        else:
            self.attempt += 1
            self.state = RetryState.ATTEMPTING
        return self.state
