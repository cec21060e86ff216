from __future__ import annotations

from healthgate.config.schema import RestartPolicy


def backoff_for_attempt(attempt_idx: int, policy: RestartPolicy) -> float:
    """
    Return the wait before restart number ``attempt_idx + 1``.

    attempt_idx is zero-based: 0 means the wait before the first restart.
    An explicit schedule repeats its last value; otherwise the wait doubles
    from one second up to ``backoff_max_sec``.
    """
    if policy.backoff_sec:
        return float(policy.backoff_sec[min(attempt_idx, len(policy.backoff_sec) - 1)])
    return float(min(policy.backoff_max_sec, 2 ** min(attempt_idx, 32)))


def may_restart(policy: RestartPolicy, restarts_used: int, *, exit_code: int | None) -> bool:
    """Decide whether a failed unit gets another launch."""
    if policy.mode == "never":
        return False
    if restarts_used >= policy.max_restarts:
        return False
    if policy.mode == "on-failure" and exit_code == 0:
        return False
    return True
