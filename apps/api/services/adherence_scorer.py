"""
Adherence Scorer

How closely did an executed session follow its planned activity template?

    score = completion * 0.60 + sequence * 0.20 + time * 0.20

- completion: activities reported completed/partial over planned count (capped at 1.0)
- sequence:   1.0 when those activities were reported in non-decreasing index
              order, 0.5 when the coach jumped ahead and came back
- time:       1.0 when actual total time is within 75%-125% of planned, otherwise
              min(ratio, 1.5) / 1.5 capped at 1.0

Pure module: no database access. Online and offline reports go through the
same function so their scores are comparable.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Mapping, Optional, Sequence

COMPLETION_WEIGHT = 0.60
SEQUENCE_WEIGHT = 0.20
TIME_WEIGHT = 0.20

SEQUENCE_BROKEN_SCORE = 0.5
TIME_RANGE_LOW = 0.75
TIME_RANGE_HIGH = 1.25
TIME_RATIO_CAP = 1.5

DONE_STATUSES = ("completed", "partial")
STATUS_KEYS = ("completed", "partial", "skipped", "struggled")


@dataclass
class PerActivityTiming:
    activity_name: Optional[str]
    status: Optional[str]
    planned_minutes: Optional[float]
    actual_minutes: Optional[float]


@dataclass
class AdherenceDetails:
    activities_planned: int
    activities_completed: int
    activities_partial: int
    activities_skipped: int
    activities_struggled: int
    sequence_followed: bool
    total_planned_minutes: float
    total_actual_minutes: float
    time_within_range: bool
    per_activity: List[PerActivityTiming] = field(default_factory=list)


@dataclass
class AdherenceResult:
    score: float                  # 0-1, rounded to 2 dp
    completion_ratio: float
    sequence_score: float
    time_score: float
    details: AdherenceDetails

    def details_dict(self) -> Dict[str, Any]:
        return asdict(self.details)


def _get(item: Any, key: str, default: Any = None) -> Any:
    """Read a field from a dict or an object (pydantic model, ORM row)."""
    if isinstance(item, Mapping):
        return item.get(key, default)
    return getattr(item, key, default)


def count_statuses(activities: Sequence[Any]) -> Dict[str, int]:
    """Count reported activities per outcome category."""
    counts = {k: 0 for k in STATUS_KEYS}
    for a in activities:
        status = _get(a, "status")
        if status in counts:
            counts[status] += 1
    return counts


def _sequence_followed(activities: Sequence[Any]) -> bool:
    indices = [
        _get(a, "activity_index")
        for a in activities
        if _get(a, "status") in DONE_STATUSES
    ]
    indices = [i for i in indices if isinstance(i, int) and not isinstance(i, bool)]
    if len(indices) <= 1:
        return True
    return all(cur >= prev for prev, cur in zip(indices, indices[1:]))


def _time_score(total_planned_minutes: float, total_actual_minutes: float) -> tuple[float, bool]:
    if total_planned_minutes <= 0:
        return 1.0, True
    ratio = total_actual_minutes / total_planned_minutes
    if TIME_RANGE_LOW <= ratio <= TIME_RANGE_HIGH:
        return 1.0, True
    return min(min(ratio, TIME_RATIO_CAP) / TIME_RATIO_CAP, 1.0), False


def _match_planned_step(activity: Any, activity_flow: Sequence[Any]) -> Optional[Any]:
    activity_id = _get(activity, "activity_id")
    name = _get(activity, "activity_name")
    for step in activity_flow:
        if activity_id is not None and _get(step, "activity_id") == activity_id:
            return step
        if name is not None and _get(step, "activity_name") == name:
            return step
    return None


def round_half_up(value: float, places: int = 2) -> float:
    """Round halves up (0.695 -> 0.70) instead of to the nearest binary float."""
    factor = 10 ** places
    return math.floor(value * factor + 0.5) / factor


def score_adherence(
    activity_flow: Optional[Sequence[Any]],
    activities: Sequence[Any],
) -> Optional[AdherenceResult]:
    """
    Score reported activities against the planned template.

    Args:
        activity_flow: Template steps (dicts with planned_duration_minutes,
            activity_name, optional activity_id). None/empty means no template.
        activities: Reported activities, in the order the coach reported them.

    Returns:
        AdherenceResult, or None when there is no template to score against.
    """
    if not activity_flow:
        return None

    planned_count = len(activity_flow)
    counts = count_statuses(activities)

    done = sum(1 for a in activities if _get(a, "status") in DONE_STATUSES)
    completion_ratio = min(done / planned_count, 1.0)

    sequence_followed = _sequence_followed(activities)
    sequence_score = 1.0 if sequence_followed else SEQUENCE_BROKEN_SCORE

    total_planned_minutes = sum((_get(step, "planned_duration_minutes") or 0) for step in activity_flow)
    total_actual_seconds = sum((_get(a, "actual_duration_seconds") or 0) for a in activities)
    total_actual_minutes = total_actual_seconds / 60
    time_score, time_within_range = _time_score(total_planned_minutes, total_actual_minutes)

    raw = (
        completion_ratio * COMPLETION_WEIGHT
        + sequence_score * SEQUENCE_WEIGHT
        + time_score * TIME_WEIGHT
    )

    per_activity = []
    for a in activities:
        planned = _match_planned_step(a, activity_flow)
        actual_s = _get(a, "actual_duration_seconds")
        per_activity.append(PerActivityTiming(
            activity_name=_get(a, "activity_name"),
            status=_get(a, "status"),
            planned_minutes=(_get(planned, "planned_duration_minutes") or None) if planned is not None else None,
            actual_minutes=round(actual_s / 60, 1) if actual_s else None,
        ))

    details = AdherenceDetails(
        activities_planned=planned_count,
        activities_completed=counts["completed"],
        activities_partial=counts["partial"],
        activities_skipped=counts["skipped"],
        activities_struggled=counts["struggled"],
        sequence_followed=sequence_followed,
        total_planned_minutes=total_planned_minutes,
        total_actual_minutes=round(total_actual_minutes, 1),
        time_within_range=time_within_range,
        per_activity=per_activity,
    )

    return AdherenceResult(
        score=round_half_up(raw),
        completion_ratio=completion_ratio,
        sequence_score=sequence_score,
        time_score=time_score,
        details=details,
    )
