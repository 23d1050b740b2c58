from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Dict, Any, Optional, Union
import logging
import time

from ..data.patterns import AutomationPattern
from ..data.pattern_store import PatternStoreService
from ..environment.interfaces import ActionExecutor, Perception
from .config import AgentConfig
from .errors import PerceptionError
from .feedback import ExecutionFeedbackLoop
from .strategies import (
    InteractionBudget, StrategyContext, StrategyResult, TraceEntry,
    STRATEGIES, LEARNED_PATTERN, VISION,
)
from .task import TaskInterpretation
from .telemetry import TelemetryManager, ExecutionMetrics

logger = logging.getLogger(__name__)


@dataclass
class StrategyAttempt:
    strategy: str
    success: bool
    error: Optional[str] = None
    error_kind: Optional[str] = None
    interactions: int = 0
    duration: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'strategy': self.strategy,
            'success': self.success,
            'error': self.error,
            'error_kind': self.error_kind,
            'interactions': self.interactions,
            'duration': self.duration,
        }


@dataclass
class TaskResult:
    success: bool
    action_trace: List[TraceEntry] = field(default_factory=list)
    strategy_used: Optional[str] = None
    attempted_strategies: List[StrategyAttempt] = field(default_factory=list)
    error: Optional[str] = None
    interactions: int = 0
    duration: float = 0.0
    pattern_used: Optional[str] = None
    patterns_learned: List[str] = field(default_factory=list)
    learning_error: Optional[str] = None
    screenshots: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'actionTrace': [e.to_dict() for e in self.action_trace],
            'strategyUsed': self.strategy_used,
            'attemptedStrategies': [a.to_dict() for a in self.attempted_strategies],
            'error': self.error,
            'interactions': self.interactions,
            'duration': self.duration,
            'patternUsed': self.pattern_used,
            'patternsLearned': list(self.patterns_learned),
            'learningError': self.learning_error,
            'screenshots': list(self.screenshots),
        }


class StrategyController:
    """Runs a task through the strategy list under one interaction budget.

    The budget is shared by every strategy of a task. Once it is spent the
    remaining strategies are skipped instead of retried with a fresh one.
    """

    def __init__(self, executor: ActionExecutor,
                 store: Optional[PatternStoreService] = None,
                 perception: Optional[Perception] = None,
                 config: Optional[AgentConfig] = None,
                 telemetry: Optional[TelemetryManager] = None):
        self.executor = executor
        self.store = store
        self.perception = perception
        self.config = config or AgentConfig()
        self.telemetry = telemetry
        self.feedback = None
        if store is not None and self.config.enable_pattern_storage:
            self.feedback = ExecutionFeedbackLoop(store, self.config.step_timeout_ms)

    def plan_strategies(self, pattern: Optional[AutomationPattern] = None) -> List[str]:
        """Effective strategy order for a task"""
        order = []
        for name in self.config.strategies:
            if name not in STRATEGIES or name in order:
                continue
            if name == VISION and not self.config.use_vision:
                continue
            order.append(name)

        if pattern is not None and pattern.confidence >= self.config.min_confidence:
            return [LEARNED_PATTERN] + [s for s in order if s != LEARNED_PATTERN]
        return [s for s in order if s != LEARNED_PATTERN]

    def interpret(self, description: str, task_type: str = 'custom') -> TaskInterpretation:
        """Build an interpretation through perception, or a bare one without it"""
        if self.perception is None:
            return TaskInterpretation.simple(task_type, description)
        try:
            data = self.perception.interpret_task(description, self.executor.get_page_state())
            task = TaskInterpretation.from_dict(data)
        except (PerceptionError, ValueError, TypeError) as e:
            logger.warning("Task interpretation failed, continuing without sub-tasks: %s", e)
            return TaskInterpretation.simple(task_type, description)

        if task_type != 'custom':
            task.task_type = task_type
        if not task.user_intent:
            task.user_intent = description
        return task

    def execute_task(self, task: Union[TaskInterpretation, str],
                     budget: Union[InteractionBudget, int, None] = None,
                     learning_enabled: bool = True) -> TaskResult:
        """Try strategies in order until one succeeds or they run out"""
        if isinstance(task, str):
            task = self.interpret(task)
        if not isinstance(budget, InteractionBudget):
            budget = InteractionBudget(budget or self.config.max_clicks)

        start = time.time()
        learning = learning_enabled and self.store is not None
        pattern = None
        if learning and self.config.use_pattern_learning:
            pattern = self.store.get_best_pattern(
                task.task_type,
                context=self.executor.get_page_state(),
                required_capabilities=task.required_capabilities,
            )

        order = self.plan_strategies(pattern)
        logger.info("Executing %s task with strategies %s (budget %d)",
                    task.task_type, ' -> '.join(order), budget.limit)

        results: List[StrategyResult] = []
        attempts: List[StrategyAttempt] = []
        screenshots: List[str] = []
        for name in order:
            used_before = budget.used
            attempt_start = time.monotonic()
            ctx = StrategyContext(
                task=task,
                executor=self.executor,
                budget=budget,
                perception=self.perception,
                pattern=pattern,
                step_timeout_ms=self.config.step_timeout_ms,
                deadline=attempt_start + self.config.strategy_timeout_s,
            )
            result = STRATEGIES[name].run(ctx)
            results.append(result)
            attempts.append(StrategyAttempt(
                strategy=name,
                success=result.success,
                error=result.error,
                error_kind=result.error_kind,
                interactions=budget.used - used_before,
                duration=time.monotonic() - attempt_start,
            ))

            if result.success:
                logger.info("Strategy %s succeeded with %d interactions", name, budget.used - used_before)
                break

            logger.warning("Strategy %s failed: %s", name, result.error)
            shot = self._debug_screenshot(name)
            if shot:
                screenshots.append(shot)
            if result.budget_exceeded:
                logger.warning("Interaction budget exhausted, skipping remaining strategies")
                break

        winner = results[-1] if results and results[-1].success else None
        duration = time.time() - start
        task_result = TaskResult(
            success=winner is not None,
            action_trace=[e for e in winner.trace if e.success] if winner else [],
            strategy_used=winner.strategy if winner else None,
            attempted_strategies=attempts,
            interactions=budget.used,
            duration=duration,
            pattern_used=pattern.id if pattern else None,
            screenshots=screenshots,
        )
        if winner is None:
            task_result.error = results[-1].error if results else "No strategies available"

        if learning and self.feedback is not None and results:
            context = self.build_execution_context(budget, duration, len(screenshots))
            report = self.feedback.record(
                task.task_type, results, task_result.success, duration * 1000, context,
                used_pattern=pattern,
            )
            task_result.patterns_learned = report.learned
            task_result.learning_error = report.error

        self._record_telemetry(task, task_result)
        return task_result

    def build_execution_context(self, budget: InteractionBudget, duration: float,
                                screenshots: int = 0) -> Dict[str, Any]:
        state = self.executor.get_page_state()
        context = {
            'url': state.get('url', ''),
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'browser': state.get('browser', 'chromium'),
            'viewport': state.get('viewport'),
            'sessionDuration': duration,
            'clickCount': budget.used,
            'screenshots': screenshots,
        }
        return context

    def _debug_screenshot(self, strategy: str) -> Optional[str]:
        if not self.config.screenshot_debug:
            return None
        return self.executor.screenshot(f"{strategy}-failure")

    def _record_telemetry(self, task: TaskInterpretation, result: TaskResult) -> None:
        if self.telemetry is None:
            return
        self.telemetry.record_execution(
            ExecutionMetrics(
                task_type=task.task_type,
                success=result.success,
                duration=result.duration,
                interactions=result.interactions,
                strategy_used=result.strategy_used,
                attempts=len(result.attempted_strategies),
                learned=bool(result.patterns_learned),
            ),
            attempted=[a.to_dict() for a in result.attempted_strategies],
        )
