# app/engine/policy.py

"""
POLICY RESOLVER

Merges a template's default assessment policy with the per-assignment
overrides into one immutable EffectivePolicy.

MERGE RULES:
1. Override wins over template, template wins over legacy single fields
2. Malformed numbers are clamped, never raised
3. Absent or non-positive max_attempts means exactly one attempt
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from app.schemas.template import TemplateQuestion

MAX_OVERALL_SECONDS = 24 * 60 * 60
MAX_QUESTION_SECONDS = 60 * 60

DEFAULT_PASS_MARK_PCT = 50
DEFAULT_RETRY_THRESHOLD_PCT = 40


class TimingMode(str, Enum):
    NONE = "none"
    OVERALL = "overall"
    PER_QUESTION = "per_question"


class RetryMode(str, Enum):
    NONE = "none"
    ALL = "all"
    BELOW_SCORE = "below_score"


_RETRY_MODE_ALIASES = {"belowScore": RetryMode.BELOW_SCORE}


@dataclass(frozen=True)
class RetryPolicy:
    enabled: bool = True
    mode: RetryMode = RetryMode.BELOW_SCORE
    threshold_pct: int = DEFAULT_RETRY_THRESHOLD_PCT


@dataclass(frozen=True)
class EffectivePolicy:
    timing_mode: TimingMode = TimingMode.NONE
    overall_seconds: int = 0
    legacy_per_question_seconds: int = 0
    max_attempts: int = 1
    pass_mark_pct: int = DEFAULT_PASS_MARK_PCT
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    auto_grade: bool = True

    time_window_enabled: bool = False
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None


def clamp_int(value: Any, lo: int, hi: int) -> int:
    """Floor ``value`` into [lo, hi]; anything non-numeric becomes ``lo``."""
    if isinstance(value, bool):
        return lo
    try:
        n = float(value)
    except (TypeError, ValueError):
        return lo
    if not math.isfinite(n):
        return lo
    return max(lo, min(hi, int(math.floor(n))))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _first_present(*values: Any) -> Any:
    for v in values:
        if v is not None:
            return v
    return None


def to_datetime_safe(value: Any) -> Optional[datetime]:
    """
    Accepts datetimes, ISO strings, epoch seconds or milliseconds and
    ``{"seconds": .., "nanoseconds": ..}`` maps. Returns an aware UTC
    datetime, or None when the value can't be read.
    """
    if value is None or value == "":
        return None

    try:
        if isinstance(value, datetime):
            dt = value
        elif isinstance(value, dict) and _is_number(value.get("seconds")):
            ms = value["seconds"] * 1000 + (value.get("nanoseconds") or 0) // 1_000_000
            dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
        elif _is_number(value):
            # Heuristic: values below 1e10 are seconds, otherwise milliseconds
            seconds = value if value < 10_000_000_000 else value / 1000
            dt = datetime.fromtimestamp(seconds, tz=timezone.utc)
        elif isinstance(value, str):
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        else:
            return None
    except (ValueError, OverflowError, OSError):
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _resolve_timing_mode(overrides: Dict[str, Any], meta: Dict[str, Any]) -> TimingMode:
    for candidate in (overrides.get("timing_mode"), meta.get("timing_mode")):
        if candidate in (m.value for m in TimingMode):
            return TimingMode(candidate)

    # Legacy templates only carry the single fields
    total = meta.get("total_time_sec")
    per_q = meta.get("time_per_question_sec")
    if _is_number(total) and total > 0:
        return TimingMode.OVERALL
    if _is_number(per_q) and per_q > 0:
        return TimingMode.PER_QUESTION
    return TimingMode.NONE


def _resolve_overall_seconds(overrides: Dict[str, Any], meta: Dict[str, Any]) -> int:
    for candidate in (
        overrides.get("overall_time_seconds"),
        meta.get("overall_time_seconds"),
        meta.get("total_time_sec"),
    ):
        if _is_number(candidate):
            return clamp_int(candidate, 0, MAX_OVERALL_SECONDS)
    return 0


def _resolve_max_attempts(overrides: Dict[str, Any], meta: Dict[str, Any]) -> int:
    raw = _first_present(overrides.get("max_attempts"), meta.get("max_attempts"))
    if _is_number(raw) and raw > 0:
        return max(1, int(math.floor(raw)))
    return 1


def _resolve_retry_policy(raw: Any) -> RetryPolicy:
    if not isinstance(raw, dict):
        return RetryPolicy()

    mode_raw = raw.get("mode", RetryMode.BELOW_SCORE.value)
    mode_raw = _RETRY_MODE_ALIASES.get(mode_raw, mode_raw)
    try:
        mode = RetryMode(mode_raw)
    except ValueError:
        mode = RetryMode.BELOW_SCORE

    threshold = raw.get("threshold_pct", raw.get("threshold", DEFAULT_RETRY_THRESHOLD_PCT))

    return RetryPolicy(
        enabled=bool(raw.get("enabled", True)),
        mode=mode,
        threshold_pct=clamp_int(threshold, 0, 100),
    )


def resolve_policy(
    template_meta: Optional[Dict[str, Any]],
    overrides: Optional[Dict[str, Any]] = None,
) -> EffectivePolicy:
    meta = template_meta if isinstance(template_meta, dict) else {}
    overrides = overrides or {}

    pass_mark = meta.get("pass_mark_pct", DEFAULT_PASS_MARK_PCT)

    window_enabled = _first_present(overrides.get("time_window_enabled"), meta.get("time_window_enabled"))

    return EffectivePolicy(
        timing_mode=_resolve_timing_mode(overrides, meta),
        overall_seconds=_resolve_overall_seconds(overrides, meta),
        legacy_per_question_seconds=clamp_int(meta.get("time_per_question_sec", 0), 0, MAX_QUESTION_SECONDS),
        max_attempts=_resolve_max_attempts(overrides, meta),
        pass_mark_pct=clamp_int(pass_mark, 0, 100) if pass_mark is not None else DEFAULT_PASS_MARK_PCT,
        retry_policy=_resolve_retry_policy(meta.get("retry_policy")),
        auto_grade=bool(meta.get("auto_grade", True)),
        time_window_enabled=bool(window_enabled),
        window_start=to_datetime_safe(_first_present(overrides.get("start_at"), meta.get("start_at"))),
        window_end=to_datetime_safe(_first_present(overrides.get("end_at"), meta.get("end_at"))),
    )


def question_limit(policy: EffectivePolicy, question: Optional[TemplateQuestion]) -> Optional[int]:
    """Own limit if > 0, else the legacy flat limit if > 0, else untimed."""
    if question is None:
        return None
    own = clamp_int(question.time_limit_seconds or 0, 0, MAX_QUESTION_SECONDS)
    if own > 0:
        return own
    if policy.legacy_per_question_seconds > 0:
        return policy.legacy_per_question_seconds
    return None


def time_window_block_reason(policy: EffectivePolicy, now: datetime) -> Optional[str]:
    if not policy.time_window_enabled:
        return None

    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    if policy.window_start and now < policy.window_start:
        return f"This assessment opens at {policy.window_start:%Y-%m-%d %H:%M} UTC."
    if policy.window_end and now > policy.window_end:
        return f"This assessment closed at {policy.window_end:%Y-%m-%d %H:%M} UTC."
    return None
