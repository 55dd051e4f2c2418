from app.engine.policy import resolve_policy
from app.engine.retry import is_retake_allowed


def _policy(max_attempts=2, **retry):
    retry_policy = {"enabled": True, "mode": "below_score", "threshold_pct": 50}
    retry_policy.update(retry)
    return resolve_policy({"max_attempts": max_attempts, "retry_policy": retry_policy})


def test_below_score_allows_then_cap_denies():
    policy = _policy()

    assert is_retake_allowed(policy, attempt_count=1, score_pct=40) is True
    # cap reached regardless of score
    assert is_retake_allowed(policy, attempt_count=2, score_pct=90) is False
    assert is_retake_allowed(policy, attempt_count=2, score_pct=10) is False


def test_below_score_needs_a_score_under_threshold():
    policy = _policy(max_attempts=5)

    assert is_retake_allowed(policy, 1, 50) is False
    assert is_retake_allowed(policy, 1, 49) is True
    assert is_retake_allowed(policy, 1, None) is False


def test_mode_all_and_none():
    assert is_retake_allowed(_policy(mode="all"), 1, 95) is True
    assert is_retake_allowed(_policy(mode="all"), 1, None) is True
    assert is_retake_allowed(_policy(mode="none"), 1, 0) is False


def test_disabled_retry_never_allows():
    assert is_retake_allowed(_policy(enabled=False, mode="all"), 1, 0) is False


def test_unset_max_attempts_forbids_any_retake():
    policy = resolve_policy({"retry_policy": {"enabled": True, "mode": "all"}})
    assert is_retake_allowed(policy, 1, 0) is False
