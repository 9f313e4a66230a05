"""
Priority scoring for pending work items.

The score (0-100) combines:
- Wait time: 4 points per minute waited, up to 40
- Complexity: short orders score higher, 25 - 2.5 per minute of work, floor 10
- Loyalty: gold +10, regular +5
- Urgency: +15 from 4 minutes, +25 from 6, +50 from 8 (emergency)
- Fairness: 5 points per skip once an item has been passed over more than 3 times
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from brewqueue.models.work_item import CallerTier, WorkItem, elapsed_minutes

logger = logging.getLogger(__name__)

MAX_SCORE = 100.0

WAIT_POINTS_PER_MINUTE = 4.0
WAIT_POINTS_CAP = 40.0

COMPLEXITY_BASE = 25.0
COMPLEXITY_POINTS_PER_MINUTE = 2.5
COMPLEXITY_FLOOR = 10.0

LOYALTY_POINTS = {
    CallerTier.GOLD: 10.0,
    CallerTier.REGULAR: 5.0,
    CallerTier.NEW: 0.0,
    CallerTier.NONE: 0.0,
}

EMERGENCY_THRESHOLD_MINUTES = 8
EMERGENCY_POINTS = 50.0
# (minimum wait, points), checked in order below the emergency threshold
URGENCY_STEPS = ((6, 25.0), (4, 15.0))

FAIRNESS_SKIP_THRESHOLD = 3
FAIRNESS_POINTS_PER_SKIP = 5.0


@dataclass(frozen=True)
class ScoreResult:
    score: float
    emergency: bool


def wait_component(wait_minutes: int) -> float:
    return min(wait_minutes * WAIT_POINTS_PER_MINUTE, WAIT_POINTS_CAP)


def complexity_component(duration: int) -> float:
    return max(COMPLEXITY_BASE - duration * COMPLEXITY_POINTS_PER_MINUTE, COMPLEXITY_FLOOR)


def loyalty_component(tier: CallerTier | None) -> float:
    if tier is None:
        return 0.0
    return LOYALTY_POINTS[tier]


def urgency_component(wait_minutes: int) -> tuple[float, bool]:
    """Return the urgency points and whether the wait crossed the emergency threshold."""
    if wait_minutes >= EMERGENCY_THRESHOLD_MINUTES:
        return EMERGENCY_POINTS, True
    for threshold, points in URGENCY_STEPS:
        if wait_minutes >= threshold:
            return points, False
    return 0.0, False


def fairness_component(skip_count: int) -> float:
    if skip_count > FAIRNESS_SKIP_THRESHOLD:
        return skip_count * FAIRNESS_POINTS_PER_SKIP
    return 0.0


def compute_score(
    item: WorkItem,
    now: datetime,
    tier: CallerTier | None,
    skip_count: int,
) -> ScoreResult:
    """Score ``item`` as of ``now``.

    Pure: the result depends only on the arguments. ``tier`` and
    ``skip_count`` are passed separately from the item so callers can score
    hypothetical states.
    """
    waited = elapsed_minutes(item.arrival_time, now)
    urgency, emergency = urgency_component(waited)

    total = (
        wait_component(waited)
        + complexity_component(item.duration)
        + loyalty_component(tier)
        + urgency
        + fairness_component(skip_count)
    )
    return ScoreResult(score=round(min(total, MAX_SCORE), 2), emergency=emergency)


def rescore(item: WorkItem, now: datetime) -> bool:
    """Write a fresh score onto ``item``.

    The emergency flag is only ever raised here, never cleared. Returns True
    when this call raised it.
    """
    result = compute_score(item, now, item.tier, item.skip_count)
    newly_emergency = result.emergency and not item.emergency

    if result.score != item.priority_score:
        logger.debug(
            "Item %s: priority %.2f -> %.2f", item.id, item.priority_score, result.score
        )
    item.priority_score = result.score
    item.emergency = item.emergency or result.emergency

    if newly_emergency:
        logger.warning(
            "Item %s flagged as EMERGENCY (wait time: %d min)", item.id, item.wait_at(now)
        )
    return newly_emergency
