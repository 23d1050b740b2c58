from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional, Tuple
import logging

from ..data.patterns import (
    ActionStep, TargetElement, SelectorPattern, ExecutionOutcome, AutomationPattern,
    generate_pattern_id, parse_coordinates, selector_kind, utc_now,
)
from ..data.pattern_store import PatternStoreService
from .errors import PatternStoreError
from .strategies import StrategyResult, TraceEntry, LEARNED_PATTERN

logger = logging.getLogger(__name__)


@dataclass
class FeedbackReport:
    stored_pattern_id: Optional[str] = None
    updated_pattern_id: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    @property
    def learned(self) -> List[str]:
        ids = []
        for pid in (self.stored_pattern_id, self.updated_pattern_id):
            if pid and pid not in ids:
                ids.append(pid)
        return ids

    @property
    def error(self) -> Optional[str]:
        return '; '.join(self.errors) if self.errors else None


def trace_to_recipe(trace: List[TraceEntry], context: Dict[str, Any],
                    default_timeout: int = 5000) -> Tuple[List[ActionStep], List[SelectorPattern]]:
    """Turn the successful entries of a trace into pattern steps and selectors"""
    steps: List[ActionStep] = []
    selectors: Dict[str, SelectorPattern] = {}
    page = context.get('url', '')
    now = utc_now()

    for entry in trace:
        if not entry.success:
            continue
        locator, value = entry.locator, entry.value
        if entry.action == 'navigate' and not locator:
            locator, value = value, None

        parameters = {'value': value} if value is not None else {}
        steps.append(ActionStep(
            step_number=len(steps) + 1,
            action=entry.action,
            target=TargetElement(
                primary_selector=locator or '',
                fallback_selectors=[f for f in entry.fallbacks if f != locator],
                coordinates=parse_coordinates(locator) if locator else None,
                visual_description=entry.description,
            ),
            description=entry.description,
            parameters=parameters,
            timeout=default_timeout,
        ))

        for candidate in [locator] + list(entry.fallbacks):
            if not candidate or candidate in selectors or entry.action == 'navigate':
                continue
            selectors[candidate] = SelectorPattern(
                selector=candidate,
                type=selector_kind(candidate),
                reliability=1.0,
                context=page,
                last_worked=now if candidate == locator else None,
            )

    return steps, list(selectors.values())


class ExecutionFeedbackLoop:
    """Reports finished runs back to the pattern store.

    A run can reinforce the pattern it replayed and, independently, seed
    or update the pattern matching whatever trace it produced.
    """

    def __init__(self, store: PatternStoreService, step_timeout_ms: int = 5000):
        self.store = store
        self.step_timeout_ms = step_timeout_ms

    def record(self, task_type: str, attempts: List[StrategyResult], success: bool,
               duration: float, context: Dict[str, Any],
               used_pattern: Optional[AutomationPattern] = None) -> FeedbackReport:
        """Never raises on store failures; they are returned in the report"""
        report = FeedbackReport()
        if not attempts:
            return report

        source = attempts[-1]
        steps, selectors = trace_to_recipe(source.trace, context, self.step_timeout_ms)
        candidate_id = generate_pattern_id(task_type, steps) if steps else None

        replay = next((a for a in attempts if a.strategy == LEARNED_PATTERN), None)
        if used_pattern is not None and replay is not None:
            outcome = ExecutionOutcome(
                success=replay.success,
                execution_time=duration,
                context=dict(context, completed_steps=replay.completed_steps),
                error_details=replay.error,
                metrics={'interactions': context.get('clickCount', 0)},
            )
            try:
                if self.store.update_after_execution(used_pattern.id, outcome):
                    report.updated_pattern_id = used_pattern.id
            except PatternStoreError as e:
                logger.error("Failed to update pattern %s: %s", used_pattern.id, e)
                report.errors.append(str(e))

        if candidate_id is None:
            return report
        # Another strategy winning with the replayed recipe still counts as a success for it
        recovered = success and source is not replay
        if candidate_id == report.updated_pattern_id and not recovered:
            return report
        # A failed replay is already accounted for on the pattern it replayed
        if not success and source is replay and report.updated_pattern_id:
            return report

        outcome = ExecutionOutcome(
            success=success,
            execution_time=duration,
            context=dict(context, strategy=source.strategy),
            error_details=None if success else source.error,
            metrics={'interactions': context.get('clickCount', 0)},
        )
        try:
            report.stored_pattern_id = self.store.store(task_type, steps, selectors, outcome)
        except PatternStoreError as e:
            logger.error("Failed to store pattern for %s: %s", task_type, e)
            report.errors.append(str(e))

        return report
