"""Scoring rules for automation patterns.

Everything here is a pure function of a pattern and the current time, so
the store can recompute scores at any point without keeping extra state.
"""
from datetime import datetime
from typing import List, Optional

from .patterns import AutomationPattern, age_in_days, utc_now

MAX_USAGE_BONUS = 0.1
RECENT_WINDOW_DAYS = 7
RECENT_BONUS = 0.05
STALE_WINDOW_DAYS = 30
STALE_BONUS = 0.02

# Eviction thresholds for the optimization sweep
UNRELIABLE_SUCCESS_RATE = 0.3
UNRELIABLE_MIN_EXECUTIONS = 10
ABANDONED_AGE_DAYS = 180
ABANDONED_MAX_EXECUTIONS = 3

SORT_FIELDS = ('success_rate', 'confidence', 'usage_count', 'last_updated')


def success_rate(successful: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return successful / total


def usage_bonus(total_executions: int) -> float:
    return min(total_executions / 10, MAX_USAGE_BONUS)


def recency_bonus(last_updated: Optional[datetime], now: Optional[datetime] = None) -> float:
    days = age_in_days(last_updated, now)
    if days <= RECENT_WINDOW_DAYS:
        return RECENT_BONUS
    if days <= STALE_WINDOW_DAYS:
        return STALE_BONUS
    return 0.0


def compute_confidence(pattern: AutomationPattern, now: Optional[datetime] = None) -> float:
    """Blend success rate, trial count and recency into a score in [0, 1]"""
    score = (pattern.success_rate
             + usage_bonus(pattern.usage_stats.total_executions)
             + recency_bonus(pattern.last_updated, now))
    return max(0.0, min(score, 1.0))


def is_unreliable(pattern: AutomationPattern) -> bool:
    return (pattern.success_rate < UNRELIABLE_SUCCESS_RATE and
            pattern.usage_stats.total_executions >= UNRELIABLE_MIN_EXECUTIONS)


def is_abandoned(pattern: AutomationPattern, now: Optional[datetime] = None) -> bool:
    return (age_in_days(pattern.last_updated, now) > ABANDONED_AGE_DAYS and
            pattern.usage_stats.total_executions < ABANDONED_MAX_EXECUTIONS)


def should_evict(pattern: AutomationPattern, now: Optional[datetime] = None) -> bool:
    return is_unreliable(pattern) or is_abandoned(pattern, now)


def _sort_value(pattern: AutomationPattern, sort_by: str):
    if sort_by == 'success_rate':
        return pattern.success_rate
    if sort_by == 'confidence':
        return pattern.confidence
    if sort_by == 'usage_count':
        return pattern.usage_stats.total_executions
    if sort_by == 'last_updated':
        return pattern.last_updated.timestamp()
    raise ValueError(f"Unknown sort field: {sort_by}")


def rank_patterns(patterns: List[AutomationPattern], sort_by: Optional[str]) -> List[AutomationPattern]:
    """Order patterns best-first by the given field; None keeps the input order"""
    if not sort_by:
        return list(patterns)
    return sorted(patterns, key=lambda p: _sort_value(p, sort_by), reverse=True)


def improvement_opportunities(patterns: List[AutomationPattern],
                              now: Optional[datetime] = None) -> List[str]:
    now = now or utc_now()
    opportunities = []

    low_success = [p for p in patterns
                   if p.success_rate < 0.8 and p.usage_stats.total_executions >= 5]
    if low_success:
        opportunities.append(f"{len(low_success)} patterns have success rates below 80%")

    idle = [p for p in patterns if age_in_days(p.last_updated, now) > 90]
    if idle:
        opportunities.append(f"{len(idle)} patterns haven't been used in over 90 days")

    return opportunities
