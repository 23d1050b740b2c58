import pytest
from datetime import timedelta

from crm_agent.core.config import AgentConfig
from crm_agent.core.task import TaskInterpretation, ActionInstruction
from crm_agent.data.patterns import (
    AutomationPattern, ActionStep, TargetElement, UsageStatistics,
    generate_pattern_id, utc_now,
)
from crm_agent.data.pattern_store import PatternStoreService
from crm_agent.data.scoring import compute_confidence
from crm_agent.environment.interfaces import ActionResult


class FakeExecutor:
    """In-memory executor; locators listed in ``failing`` never resolve"""

    def __init__(self, failing=(), url='https://crm.example.com/home'):
        self.failing = set(failing)
        self.performed = []
        self.screenshots = []
        self.url = url

    def perform(self, action, locator, value=None, timeout=5000):
        if locator in self.failing:
            return ActionResult.failed(f"No element matches {locator}")
        self.performed.append((action, locator, value))
        return ActionResult.ok(0.01)

    def screenshot(self, label):
        self.screenshots.append(label)
        return f"{label}.png"

    def get_page_state(self):
        return {
            'url': self.url,
            'title': 'VinSolutions CRM',
            'browser': 'chromium',
            'viewport': {'width': 1920, 'height': 1080},
        }


class FakePerception:
    def __init__(self, locations=None, actions=None, complete_after=None, interpretation=None):
        self.locations = locations or {}
        self.actions = list(actions or [])
        self.complete_after = complete_after
        self.interpretation = interpretation or {}
        self.verifications = 0

    def locate(self, description, screenshot):
        return self.locations.get(description)

    def next_action(self, screenshot, goal):
        return self.actions.pop(0) if self.actions else None

    def verify_completion(self, task_description, success_criteria, page_state):
        self.verifications += 1
        return self.complete_after is not None and self.verifications >= self.complete_after

    def interpret_task(self, description, page_state):
        return self.interpretation


@pytest.fixture
def executor():
    return FakeExecutor()


@pytest.fixture
def patterns_path(tmp_path):
    return tmp_path / 'patterns' / 'automation-patterns.json'


@pytest.fixture
def store(patterns_path):
    service = PatternStoreService.from_path(str(patterns_path))
    yield service
    service.stop()


@pytest.fixture
def config():
    return AgentConfig()


@pytest.fixture
def report_task():
    """Two-click report task with concrete selectors"""
    return TaskInterpretation(
        task_type='report',
        user_intent='Open the lead source ROI report',
        estimated_clicks=2,
        sub_tasks=[
            ActionInstruction('click', selector='#reports', description='Reports tab'),
            ActionInstruction('click', selector='text=Lead Source ROI', description='Report link'),
        ],
    )


@pytest.fixture
def pattern_factory():
    def make(selectors=('#reports', '#run'), task_type='report', success_rate=1.0,
             total=1, confidence=None, age_days=0, conditions=(), fallbacks=None):
        steps = [
            ActionStep(i + 1, 'click', TargetElement(s, fallback_selectors=list((fallbacks or {}).get(s, []))))
            for i, s in enumerate(selectors)
        ]
        successful = round(success_rate * total)
        updated = utc_now() - timedelta(days=age_days)
        pattern = AutomationPattern(
            id=generate_pattern_id(task_type, steps),
            task_type=task_type,
            action_sequence=steps,
            success_rate=success_rate,
            execution_count=total,
            applicable_conditions=list(conditions),
            required_capabilities=['mouse_interaction'],
            created_date=updated,
            last_updated=updated,
            usage_stats=UsageStatistics(
                total_executions=total,
                successful_executions=successful,
                failed_executions=total - successful,
            ),
        )
        pattern.confidence = compute_confidence(pattern) if confidence is None else confidence
        return pattern
    return make
