# app/engine/retry.py

from typing import Optional

from app.engine.policy import EffectivePolicy, RetryMode


def is_retake_allowed(
    policy: EffectivePolicy,
    attempt_count: int,
    score_pct: Optional[float],
) -> bool:
    """
    Decide whether another attempt may be started.

    ``attempt_count`` is the number of submitted attempts, the one just
    finalized included. A pending (None) score never earns a retake under
    the below-score mode.
    """
    if attempt_count >= policy.max_attempts:
        return False

    retry = policy.retry_policy
    if not retry.enabled:
        return False

    if retry.mode == RetryMode.NONE:
        return False
    if retry.mode == RetryMode.ALL:
        return True
    if retry.mode == RetryMode.BELOW_SCORE:
        return score_pct is not None and score_pct < retry.threshold_pct
    return False
