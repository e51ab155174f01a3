import pytest

from imagetaster.constants import MAX_SSH_RETRY
from imagetaster.services.retry import RetryPolicy, poll_until


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


def test_retry_policy_attempts_at_most_max_retry_plus_one():
    sleeps = []
    policy = RetryPolicy(
        max_retries=MAX_SSH_RETRY,
        backoff_seconds=15,
        transient=(ConnectionRefusedError,),
        sleep=sleeps.append,
    )
    attempts = {"count": 0}

    def refuse():
        attempts["count"] += 1
        raise ConnectionRefusedError("refused")

    with pytest.raises(ConnectionRefusedError):
        policy.call(refuse)

    assert attempts["count"] == MAX_SSH_RETRY + 1
    assert sleeps == [15] * MAX_SSH_RETRY


def test_retry_policy_does_not_retry_other_errors():
    policy = RetryPolicy(max_retries=3, backoff_seconds=0, transient=(ConnectionRefusedError,), sleep=lambda _s: None)
    attempts = {"count": 0}

    def explode():
        attempts["count"] += 1
        raise ValueError("boom")

    with pytest.raises(ValueError, match="boom"):
        policy.call(explode)

    assert attempts["count"] == 1


def test_retry_policy_returns_after_transient_failures_and_reports_attempts():
    policy = RetryPolicy(
        max_retries=3,
        backoff_seconds=0,
        is_transient=lambda exc: isinstance(exc, ConnectionRefusedError),
        sleep=lambda _s: None,
    )
    outcomes = [ConnectionRefusedError("refused"), ConnectionRefusedError("refused"), "ok"]
    seen_attempts = []

    def flaky():
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    result = policy.call(flaky, on_retry=lambda state, _exc: seen_attempts.append(state.attempt))

    assert result == "ok"
    assert seen_attempts == [1, 2]


def test_retry_state_is_fresh_for_every_call():
    policy = RetryPolicy(max_retries=1, backoff_seconds=0, transient=(ConnectionRefusedError,), sleep=lambda _s: None)
    counter = {"count": 0}

    def refuse():
        counter["count"] += 1
        raise ConnectionRefusedError()

    for _ in range(2):
        with pytest.raises(ConnectionRefusedError):
            policy.call(refuse)

    assert counter["count"] == 4


def test_poll_until_returns_true_when_condition_holds():
    clock = FakeClock()
    answers = iter([False, False, True])

    assert poll_until(lambda: next(answers), timeout=10, interval=1, sleep=clock.sleep, clock=clock)
    assert clock.now == 2


def test_poll_until_gives_up_at_deadline():
    clock = FakeClock()

    assert not poll_until(lambda: False, timeout=5, interval=1, sleep=clock.sleep, clock=clock)
    assert clock.now == 5
