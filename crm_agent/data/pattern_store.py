from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Dict, Any, Optional, Callable
import copy
import logging
import threading

import numpy as np

from .patterns import (
    AutomationPattern, ActionStep, SelectorPattern, PatternCondition,
    ExecutionOutcome, UsageStatistics, generate_pattern_id,
    extract_required_capabilities, age_in_days, utc_now,
)
from .repository import PatternRepository, write_export, read_export
from . import scoring
from ..core.errors import PatternStoreError

logger = logging.getLogger(__name__)

INITIAL_CONFIDENCE = 0.8
DEFAULT_SWEEP_INTERVAL = 3600.0


@dataclass
class PatternSearchCriteria:
    """Exact-match filter over stored patterns"""
    task_type: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    min_success_rate: Optional[float] = None
    min_confidence: Optional[float] = None
    required_capabilities: List[str] = field(default_factory=list)
    max_age_days: Optional[float] = None
    context: Optional[Dict[str, Any]] = None
    sort_by: Optional[str] = None
    limit: Optional[int] = None

    def matches(self, pattern: AutomationPattern, now: Optional[datetime] = None) -> bool:
        if self.task_type and pattern.task_type != self.task_type:
            return False
        if self.min_success_rate is not None and pattern.success_rate < self.min_success_rate:
            return False
        if self.min_confidence is not None and pattern.confidence < self.min_confidence:
            return False
        if self.tags and not all(tag in pattern.tags for tag in self.tags):
            return False
        if self.required_capabilities and not set(self.required_capabilities) <= set(pattern.required_capabilities):
            return False
        if self.max_age_days is not None and age_in_days(pattern.last_updated, now) > self.max_age_days:
            return False
        if self.context is not None and not pattern.applies_to(self.context):
            return False
        return True


def generate_pattern_name(task_type: str, steps: List[ActionStep]) -> str:
    kinds = []
    for step in steps:
        if step.action not in kinds:
            kinds.append(step.action)
    return f"{task_type}_{'_'.join(kinds)}_pattern"


def generate_pattern_description(task_type: str, steps: List[ActionStep]) -> str:
    actions = ' -> '.join(step.action for step in steps)
    return f"{task_type} automation with {len(steps)} steps: {actions}"


def generate_tags(task_type: str, steps: List[ActionStep]) -> List[str]:
    tags = [task_type]
    for step in steps:
        if step.action not in tags:
            tags.append(step.action)

    if len(steps) <= 3:
        tags.append('simple')
    elif len(steps) <= 6:
        tags.append('moderate')
    else:
        tags.append('complex')
    return tags


def analyze_environment_factors(context: Dict[str, Any]) -> List[Dict[str, Any]]:
    factors = []
    if context.get('browser'):
        factors.append({
            'factor': 'browser_type',
            'impact': 'neutral',
            'weight': 0.1,
            'description': f"Browser: {context['browser']}",
        })
    viewport = context.get('viewport')
    if isinstance(viewport, dict) and 'width' in viewport and 'height' in viewport:
        factors.append({
            'factor': 'viewport_size',
            'impact': 'neutral',
            'weight': 0.05,
            'description': f"Viewport: {viewport['width']}x{viewport['height']}",
        })
    return factors


class PatternStoreService:
    """Owns the in-memory pattern index and is its only writer.

    All mutations (store, update, delete, sweep) run under one lock and
    persist the full repository before releasing it. Callers only ever
    receive deep copies of stored patterns.
    """

    def __init__(self, repository: PatternRepository,
                 sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
                 min_success_rate: float = 0.7,
                 min_confidence: float = 0.6,
                 clock: Callable[[], datetime] = utc_now):
        self.repository = repository
        self.sweep_interval = sweep_interval
        self.min_success_rate = min_success_rate
        self.min_confidence = min_confidence
        self.clock = clock
        self._lock = threading.RLock()
        self._patterns: Dict[str, AutomationPattern] = repository.load()
        self._stop_event = threading.Event()
        self._sweep_thread: Optional[threading.Thread] = None

    @classmethod
    def from_path(cls, path: str, **kwargs) -> 'PatternStoreService':
        return cls(PatternRepository(path), **kwargs)

    def __len__(self) -> int:
        return len(self._patterns)

    def __enter__(self) -> 'PatternStoreService':
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    # ----- background sweep -----

    def start(self) -> None:
        """Start the optimization sweep; later calls are ignored"""
        with self._lock:
            if self._sweep_thread is not None:
                return
            self._sweep_thread = threading.Thread(
                target=self._sweep_loop, name='pattern-sweep', daemon=True
            )
            self._sweep_thread.start()
        logger.info("Pattern store started with %d patterns (sweep every %ss)",
                    len(self._patterns), self.sweep_interval)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop_event.set()
        thread = self._sweep_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    @property
    def sweeping(self) -> bool:
        return self._sweep_thread is not None and self._sweep_thread.is_alive()

    def _sweep_loop(self) -> None:
        while not self._stop_event.wait(self.sweep_interval):
            try:
                self.optimize_patterns()
            except PatternStoreError as e:
                logger.error("Pattern sweep could not persist removals: %s", e)

    def optimize_patterns(self, now: Optional[datetime] = None) -> List[str]:
        """Drop unreliable and abandoned patterns; returns the removed ids"""
        now = now or self.clock()
        with self._lock:
            removed = [pid for pid, p in self._patterns.items() if scoring.should_evict(p, now)]
            if not removed:
                return []
            evicted = {pid: self._patterns.pop(pid) for pid in removed}
            try:
                self.repository.save(self._patterns)
            except PatternStoreError:
                self._patterns.update(evicted)
                raise
        logger.info("Pattern optimization removed %d patterns, %d remaining",
                    len(removed), len(self._patterns))
        return removed

    # ----- writes -----

    def store(self, task_type: str, action_sequence: List[ActionStep],
              selectors: List[SelectorPattern], metrics: ExecutionOutcome,
              conditions: Optional[List[PatternCondition]] = None) -> str:
        """Create a pattern for the recipe, or record a run of an existing one"""
        pattern_id = generate_pattern_id(task_type, action_sequence)

        with self._lock:
            if pattern_id in self._patterns:
                self.update_after_execution(pattern_id, metrics)
                logger.debug("Updated existing pattern %s for %s", pattern_id, task_type)
                return pattern_id

            pattern = self._new_pattern(pattern_id, task_type, action_sequence,
                                        selectors, metrics, conditions or [])
            self._patterns[pattern_id] = pattern
            try:
                self.repository.save(self._patterns)
            except PatternStoreError:
                del self._patterns[pattern_id]
                raise

        logger.info("Stored new automation pattern %s (%s, %d steps, %.0fms)",
                    pattern_id, task_type, len(action_sequence), metrics.execution_time)
        return pattern_id

    def _new_pattern(self, pattern_id: str, task_type: str, steps: List[ActionStep],
                     selectors: List[SelectorPattern], outcome: ExecutionOutcome,
                     conditions: List[PatternCondition]) -> AutomationPattern:
        now = self.clock()
        steps = copy.deepcopy(steps)
        selectors = copy.deepcopy(selectors)
        elapsed = outcome.execution_time

        usage = UsageStatistics(
            total_executions=1,
            successful_executions=1 if outcome.success else 0,
            failed_executions=0 if outcome.success else 1,
            average_execution_time=elapsed,
            fastest_execution=elapsed,
            slowest_execution=elapsed,
        )
        usage.add_record(outcome.to_record(now))

        pattern = AutomationPattern(
            id=pattern_id,
            task_type=task_type,
            action_sequence=steps,
            selectors=selectors,
            name=generate_pattern_name(task_type, steps),
            description=generate_pattern_description(task_type, steps),
            timing={
                'averageStepDelay': elapsed / len(steps) if steps else 0.0,
                'criticalWaitPoints': [],
                'pageLoadTimes': [],
                'optimizationOpportunities': [],
            },
            success_rate=scoring.success_rate(usage.successful_executions, usage.total_executions),
            execution_count=1,
            average_execution_time=elapsed,
            last_successful_execution=now if outcome.success else None,
            applicable_conditions=list(conditions),
            required_capabilities=extract_required_capabilities(steps),
            environment_factors=analyze_environment_factors(outcome.context),
            created_date=now,
            last_updated=now,
            tags=generate_tags(task_type, steps),
            usage_stats=usage,
        )
        if outcome.success:
            pattern.confidence = INITIAL_CONFIDENCE
        else:
            pattern.confidence = scoring.compute_confidence(pattern, now)
            for selector in pattern.selectors:
                selector.reliability = 0.0
                if outcome.error_details:
                    selector.record_failure(outcome.error_details)
        return pattern

    def update_after_execution(self, pattern_id: str, outcome: ExecutionOutcome) -> bool:
        """Fold one execution into a pattern's stats; False if the id is unknown"""
        with self._lock:
            pattern = self._patterns.get(pattern_id)
            if pattern is None:
                logger.warning("Pattern %s not found for update", pattern_id)
                return False

            previous = copy.deepcopy(pattern)
            self._apply_outcome(pattern, outcome)
            try:
                self.repository.save(self._patterns)
            except PatternStoreError:
                self._patterns[pattern_id] = previous
                raise

        logger.debug("Updated pattern %s: success=%s rate=%.2f confidence=%.2f",
                     pattern_id, outcome.success, pattern.success_rate, pattern.confidence)
        return True

    def _apply_outcome(self, pattern: AutomationPattern, outcome: ExecutionOutcome) -> None:
        now = self.clock()
        stats = pattern.usage_stats
        stats.total_executions += 1
        if outcome.success:
            stats.successful_executions += 1
            pattern.last_successful_execution = now
        else:
            stats.failed_executions += 1

        n = stats.total_executions
        pattern.execution_count = n
        pattern.success_rate = scoring.success_rate(stats.successful_executions, n)

        elapsed = outcome.execution_time
        pattern.average_execution_time = (pattern.average_execution_time * (n - 1) + elapsed) / n
        stats.average_execution_time = pattern.average_execution_time
        if n == 1:
            stats.fastest_execution = stats.slowest_execution = elapsed
        else:
            stats.fastest_execution = min(stats.fastest_execution, elapsed)
            stats.slowest_execution = max(stats.slowest_execution, elapsed)

        stats.add_record(outcome.to_record(now))
        self._update_step_rates(pattern, outcome, n)
        for selector in pattern.selectors:
            selector.reliability = pattern.success_rate
            if outcome.success:
                selector.last_worked = now
            elif outcome.error_details:
                selector.record_failure(outcome.error_details)

        pattern.last_updated = now
        pattern.confidence = scoring.compute_confidence(pattern, now)

    @staticmethod
    def _update_step_rates(pattern: AutomationPattern, outcome: ExecutionOutcome, n: int) -> None:
        """Rolling per-step success; steps past a failure point are left alone"""
        completed = outcome.context.get('completed_steps')
        if outcome.success:
            completed = len(pattern.action_sequence)
        elif completed is None:
            return

        for index, step in enumerate(pattern.action_sequence):
            if index < completed:
                hit = 1.0
            elif index == completed:
                hit = 0.0
            else:
                break
            step.success_rate = (step.success_rate * (n - 1) + hit) / n

    def delete_pattern(self, pattern_id: str) -> bool:
        with self._lock:
            pattern = self._patterns.pop(pattern_id, None)
            if pattern is None:
                return False
            try:
                self.repository.save(self._patterns)
            except PatternStoreError:
                self._patterns[pattern_id] = pattern
                raise
        logger.info("Deleted pattern %s", pattern_id)
        return True

    def purge(self, task_type: Optional[str] = None) -> int:
        """Remove every pattern, or every pattern of one task type"""
        with self._lock:
            doomed = [pid for pid, p in self._patterns.items()
                      if task_type is None or p.task_type == task_type]
            if not doomed:
                return 0
            removed = {pid: self._patterns.pop(pid) for pid in doomed}
            try:
                self.repository.save(self._patterns)
            except PatternStoreError:
                self._patterns.update(removed)
                raise
        logger.info("Purged %d patterns", len(doomed))
        return len(doomed)

    # ----- reads -----

    def get_pattern(self, pattern_id: str) -> Optional[AutomationPattern]:
        with self._lock:
            pattern = self._patterns.get(pattern_id)
            return copy.deepcopy(pattern) if pattern else None

    def find_patterns(self, criteria: PatternSearchCriteria) -> List[AutomationPattern]:
        now = self.clock()
        with self._lock:
            snapshot = list(self._patterns.values())
            results = [p for p in snapshot if criteria.matches(p, now)]
            results = scoring.rank_patterns(results, criteria.sort_by)
            if criteria.limit is not None:
                results = results[:criteria.limit]
            return copy.deepcopy(results)

    def get_best_pattern(self, task_type: str, context: Optional[Dict[str, Any]] = None,
                         required_capabilities: Optional[List[str]] = None) -> Optional[AutomationPattern]:
        """Most reliable qualifying pattern for the task, or None"""
        criteria = PatternSearchCriteria(
            task_type=task_type,
            min_success_rate=self.min_success_rate,
            min_confidence=self.min_confidence,
            required_capabilities=list(required_capabilities or []),
            context=context,
            sort_by='success_rate',
            limit=1,
        )
        patterns = self.find_patterns(criteria)
        if not patterns:
            return None

        best = patterns[0]
        logger.info("Retrieved best pattern %s for %s (rate=%.2f confidence=%.2f)",
                    best.id, task_type, best.success_rate, best.confidence)
        return best

    def get_statistics(self) -> Dict[str, Any]:
        now = self.clock()
        with self._lock:
            patterns = copy.deepcopy(list(self._patterns.values()))

        top_performing = scoring.rank_patterns(
            [p for p in patterns if p.usage_stats.total_executions >= 3], 'success_rate'
        )[:5]
        recently_used = scoring.rank_patterns(patterns, 'last_updated')[:10]
        rates = np.array([p.success_rate for p in patterns])
        times = np.array([p.average_execution_time for p in patterns])

        return {
            'total_patterns': len(patterns),
            'average_success_rate': float(np.mean(rates)) if len(rates) else 0.0,
            'average_execution_time': float(np.mean(times)) if len(times) else 0.0,
            'top_performing_patterns': top_performing,
            'recently_used_patterns': recently_used,
            'improvement_opportunities': scoring.improvement_opportunities(patterns, now),
        }

    # ----- import / export -----

    def export_patterns(self, path: str) -> int:
        with self._lock:
            patterns = list(self._patterns.values())
            write_export(path, patterns)
        logger.info("Exported %d patterns to %s", len(patterns), path)
        return len(patterns)

    def import_patterns(self, path: str, overwrite: bool = False) -> int:
        incoming = read_export(path)
        with self._lock:
            before = dict(self._patterns)
            imported = 0
            for pattern in incoming:
                if not overwrite and pattern.id in self._patterns:
                    continue
                self._patterns[pattern.id] = pattern
                imported += 1
            if imported:
                try:
                    self.repository.save(self._patterns)
                except PatternStoreError:
                    self._patterns = before
                    raise
        logger.info("Imported %d patterns from %s (%d total)", imported, path, len(self._patterns))
        return imported
