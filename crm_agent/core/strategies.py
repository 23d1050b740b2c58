"""Execution strategies and the per-task interaction budget.

Every strategy runs against the same ``StrategyContext`` and reports a
``StrategyResult`` envelope, so the controller never has to inspect what
kind of strategy produced it.
"""
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional
import logging
import time

from ..data.patterns import AutomationPattern, coordinate_locator
from ..environment.interfaces import ActionExecutor, Perception, ActionResult
from .errors import (
    AutomationError, ResolutionError, BudgetExceededError, StrategyTimeoutError,
    PerceptionError, StrategyUnavailableError,
)
from .task import TaskInterpretation

logger = logging.getLogger(__name__)

DIRECT = 'direct'
LEARNED_PATTERN = 'learned-pattern'
VISION = 'vision'
POSITION = 'position'
DEFAULT_ORDER = [DIRECT, LEARNED_PATTERN, VISION, POSITION]

# Only these touch the page; waits and verifications are free
BUDGETED_ACTIONS = ('click', 'fill', 'select', 'navigate')

ERROR_KINDS = [
    (BudgetExceededError, 'budget_exceeded'),
    (ResolutionError, 'resolution'),
    (StrategyTimeoutError, 'timeout'),
    (PerceptionError, 'perception'),
    (StrategyUnavailableError, 'unavailable'),
]


class InteractionBudget:
    """Counts page interactions for one task; shared by all its strategies"""

    def __init__(self, limit: int):
        if limit <= 0:
            raise ValueError("Interaction budget must be positive")
        self.limit = limit
        self.used = 0

    @staticmethod
    def counts(action: str) -> bool:
        return action in BUDGETED_ACTIONS

    @property
    def remaining(self) -> int:
        return max(self.limit - self.used, 0)

    @property
    def exhausted(self) -> bool:
        return self.used >= self.limit

    def check(self, action: str) -> None:
        if self.counts(action) and self.exhausted:
            raise BudgetExceededError(self.used, self.limit)

    def consume(self, action: str) -> None:
        if self.counts(action):
            self.used += 1


@dataclass
class TraceEntry:
    """One attempted primitive, in the order it was tried"""
    action: str
    locator: Optional[str]
    value: Optional[str] = None
    description: str = ''
    fallbacks: List[str] = field(default_factory=list)
    success: bool = True
    error: Optional[str] = None
    duration: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'action': self.action,
            'locator': self.locator,
            'value': self.value,
            'description': self.description,
            'fallbacks': list(self.fallbacks),
            'success': self.success,
            'error': self.error,
            'duration': self.duration,
        }


@dataclass
class StrategyResult:
    strategy: str
    success: bool
    trace: List[TraceEntry] = field(default_factory=list)
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @property
    def completed_steps(self) -> int:
        return sum(1 for entry in self.trace if entry.success)

    @property
    def budget_exceeded(self) -> bool:
        return self.error_kind == 'budget_exceeded'


@dataclass
class StrategyContext:
    """Everything a strategy may touch while it runs"""
    task: TaskInterpretation
    executor: ActionExecutor
    budget: InteractionBudget
    perception: Optional[Perception] = None
    pattern: Optional[AutomationPattern] = None
    step_timeout_ms: int = 5000
    deadline: Optional[float] = None

    def check_deadline(self) -> None:
        if self.deadline is not None and time.monotonic() > self.deadline:
            raise StrategyTimeoutError("Strategy time limit reached")

    def perform(self, trace: List[TraceEntry], action: str, locator: Optional[str],
                value: Optional[str] = None, description: str = '',
                fallbacks: Optional[List[str]] = None,
                timeout: Optional[int] = None) -> ActionResult:
        """Run one primitive under the budget and record it in the trace"""
        self.check_deadline()
        self.budget.check(action)
        result = self.executor.perform(action, locator, value, timeout or self.step_timeout_ms)
        trace.append(TraceEntry(
            action=action,
            locator=locator,
            value=value,
            description=description,
            fallbacks=list(fallbacks or []),
            success=result.success,
            error=result.error,
            duration=result.duration,
        ))
        if result.success:
            self.budget.consume(action)
        return result

    def resolve(self, description: str) -> str:
        """Ask perception for a locator matching a described element"""
        if self.perception is None:
            raise ResolutionError(f"No perception available to locate '{description}'")
        screenshot = self.executor.screenshot('locate')
        locator = self.perception.locate(description, screenshot)
        if not locator:
            raise ResolutionError(f"Could not locate '{description}'")
        return locator


class Strategy:
    """Base class; subclasses implement ``execute`` and raise on failure"""
    name = ''

    def run(self, ctx: StrategyContext) -> StrategyResult:
        trace: List[TraceEntry] = []
        try:
            self.execute(ctx, trace)
        except AutomationError as e:
            return StrategyResult(self.name, False, trace, str(e), self._kind(e))
        except Exception as e:
            logger.exception("Unexpected error in %s strategy", self.name)
            return StrategyResult(self.name, False, trace, f"{type(e).__name__}: {e}", 'unexpected')
        return StrategyResult(self.name, True, trace)

    @staticmethod
    def _kind(error: AutomationError) -> str:
        for error_type, kind in ERROR_KINDS:
            if isinstance(error, error_type):
                return kind
        return 'failed'

    def execute(self, ctx: StrategyContext, trace: List[TraceEntry]) -> None:
        raise NotImplementedError


class DirectStrategy(Strategy):
    """Runs the interpreted sub-tasks in order"""
    name = DIRECT

    def execute(self, ctx: StrategyContext, trace: List[TraceEntry]) -> None:
        if not ctx.task.sub_tasks:
            raise StrategyUnavailableError("No interpreted actions to execute")

        for instruction in ctx.task.sub_tasks:
            ctx.check_deadline()
            locator = instruction.selector
            if instruction.needs_resolution:
                locator = ctx.resolve(instruction.target or instruction.description)
            elif locator is None:
                locator = instruction.target

            result = ctx.perform(trace, instruction.action, locator, instruction.value,
                                 description=instruction.description or instruction.target or '')
            if not result.success:
                raise ResolutionError(
                    f"{instruction.action} on {locator} failed: {result.error}", [locator]
                )


class LearnedPatternStrategy(Strategy):
    """Replays a stored pattern, falling back through each step's locators"""
    name = LEARNED_PATTERN

    def execute(self, ctx: StrategyContext, trace: List[TraceEntry]) -> None:
        pattern = ctx.pattern
        if pattern is None:
            raise StrategyUnavailableError("No learned pattern available")

        logger.debug("Replaying pattern %s (%d steps)", pattern.id, len(pattern.action_sequence))
        for step in pattern.action_sequence:
            ctx.check_deadline()
            value = step.parameters.get('value')
            locators = step.target.locators

            if not locators:
                if step.action not in ('navigate', 'wait'):
                    raise ResolutionError(f"Step {step.step_number} has no locators")
                result = ctx.perform(trace, step.action, None, value,
                                     description=step.description, timeout=step.timeout)
                if not result.success:
                    raise AutomationError(f"Step {step.step_number} ({step.action}) failed: {result.error}")
                continue

            errors = []
            for locator in locators:
                fallbacks = [other for other in locators if other != locator]
                result = ctx.perform(trace, step.action, locator, value,
                                     description=step.description,
                                     fallbacks=fallbacks, timeout=step.timeout)
                if result.success:
                    break
                errors.append(f"{locator}: {result.error}")
            else:
                raise ResolutionError(
                    f"Step {step.step_number} ({step.action}): no locator resolved ({'; '.join(errors)})",
                    locators,
                )


class VisionStrategy(Strategy):
    """Screenshot, ask for one action, perform it, check whether the task is done"""
    name = VISION

    def execute(self, ctx: StrategyContext, trace: List[TraceEntry]) -> None:
        perception = ctx.perception
        if perception is None:
            raise StrategyUnavailableError("Vision strategy needs a perception capability")

        task = ctx.task
        iterations = ctx.budget.limit
        if task.estimated_clicks:
            iterations = min(task.estimated_clicks, ctx.budget.limit)

        for i in range(iterations):
            ctx.check_deadline()
            ctx.budget.check('click')
            screenshot = ctx.executor.screenshot(f"vision-step-{i + 1}")
            proposal = perception.next_action(screenshot, task.user_intent)
            if proposal is None:
                raise PerceptionError("No next action proposed")

            locator = proposal.locator
            if not locator and proposal.coordinates:
                locator = coordinate_locator(proposal.coordinates['x'], proposal.coordinates['y'])
            if not locator and proposal.action not in ('navigate', 'wait'):
                raise PerceptionError(f"Proposed {proposal.action} has no target")

            result = ctx.perform(trace, proposal.action, locator, proposal.value,
                                 description=proposal.reasoning)
            if not result.success:
                raise ResolutionError(f"Vision action {proposal.action} on {locator} failed: {result.error}",
                                      [locator])

            if perception.verify_completion(task.user_intent, task.success_criteria,
                                            ctx.executor.get_page_state()):
                logger.debug("Vision strategy verified completion after %d actions", i + 1)
                return

        raise AutomationError(f"Task completion not verified after {iterations} vision steps")


class PositionStrategy(Strategy):
    """Clicks the n-th match of a selector when the task names a position"""
    name = POSITION

    def execute(self, ctx: StrategyContext, trace: List[TraceEntry]) -> None:
        params = ctx.task.parameters
        position = params.get('position')
        selector = params.get('position_selector')
        if not position or not selector:
            raise StrategyUnavailableError("Position strategy not implemented for this task")

        locator = f"{selector} >> nth={int(position) - 1}"
        action = params.get('position_action', 'click')
        result = ctx.perform(trace, action, locator, params.get('position_value'),
                             description=f"element #{position} of {selector}")
        if not result.success:
            raise ResolutionError(f"No element at position {position} of {selector}", [locator])


STRATEGIES = {
    DIRECT: DirectStrategy(),
    LEARNED_PATTERN: LearnedPatternStrategy(),
    VISION: VisionStrategy(),
    POSITION: PositionStrategy(),
}
