"""Bounded retry and polling helpers."""

import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Type, TypeVar

T = TypeVar("T")


@dataclass
class RetryState:
    """Attempt bookkeeping owned by a single RetryPolicy.call invocation."""

    max_retries: int
    attempt: int = 0

    @property
    def retries_used(self) -> int:
        return max(0, self.attempt - 1)

    @property
    def exhausted(self) -> bool:
        return self.retries_used >= self.max_retries


class RetryPolicy:
    """Retries an operation on transient errors with a fixed backoff."""

    def __init__(
        self,
        max_retries: int,
        backoff_seconds: float,
        transient: Tuple[Type[BaseException], ...] = (),
        is_transient: Optional[Callable[[BaseException], bool]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.max_retries = max(0, max_retries)
        self.backoff_seconds = backoff_seconds
        self.transient = transient
        self._is_transient = is_transient
        self.sleep = sleep

    def is_transient(self, exc: BaseException) -> bool:
        if self.transient and isinstance(exc, self.transient):
            return True
        if self._is_transient is not None:
            return self._is_transient(exc)
        return False

    def call(
        self,
        operation: Callable[[], T],
        on_retry: Optional[Callable[[RetryState, Exception], None]] = None,
    ) -> T:
        state = RetryState(max_retries=self.max_retries)
        while True:
            state.attempt += 1
            try:
                return operation()
            except Exception as exc:
                if not self.is_transient(exc) or state.exhausted:
                    raise
                if on_retry is not None:
                    on_retry(state, exc)
                self.sleep(self.backoff_seconds)


def poll_until(
    condition: Callable[[], bool],
    timeout: float,
    interval: float,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> bool:
    """Evaluate ``condition`` until it holds or ``timeout`` seconds elapse."""
    deadline = clock() + timeout
    while True:
        if condition():
            return True
        if clock() >= deadline:
            return False
        sleep(interval)
