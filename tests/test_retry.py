from __future__ import annotations

from healthgate.config.schema import RestartPolicy
from healthgate.exec.retry import backoff_for_attempt, may_restart


def test_backoff_for_attempt_uses_schedule_and_clamps_to_last() -> None:
    policy = RestartPolicy(mode="on-failure", max_restarts=5, backoff_sec=(0.5, 1.0))
    assert backoff_for_attempt(0, policy) == 0.5
    assert backoff_for_attempt(1, policy) == 1.0
    assert backoff_for_attempt(5, policy) == 1.0


def test_backoff_for_attempt_exponential_default_with_cap() -> None:
    policy = RestartPolicy(mode="always", max_restarts=10, backoff_max_sec=30.0)
    assert backoff_for_attempt(0, policy) == 1.0
    assert backoff_for_attempt(1, policy) == 2.0
    assert backoff_for_attempt(4, policy) == 16.0
    assert backoff_for_attempt(5, policy) == 30.0
    assert backoff_for_attempt(500, policy) == 30.0


def test_may_restart_respects_mode_and_budget() -> None:
    never = RestartPolicy()
    on_failure = RestartPolicy(mode="on-failure", max_restarts=2)
    always = RestartPolicy(mode="always", max_restarts=1)

    assert not may_restart(never, 0, exit_code=None)
    assert may_restart(on_failure, 0, exit_code=None)
    assert may_restart(on_failure, 1, exit_code=3)
    assert not may_restart(on_failure, 2, exit_code=None)
    assert not may_restart(on_failure, 0, exit_code=0)
    assert may_restart(always, 0, exit_code=0)
    assert not may_restart(always, 1, exit_code=0)
