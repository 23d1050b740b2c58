import pytest
from crm_agent.data.patterns import (
    AutomationPattern, ActionStep, TargetElement, SelectorPattern, PatternCondition,
    UsageStatistics, ExecutionRecord, generate_pattern_id, extract_required_capabilities,
    selector_kind, coordinate_locator, parse_coordinates, parse_timestamp, utc_now,
    MAX_RECENT_EXECUTIONS, MAX_FAILURE_REASONS,
)


def _steps(*pairs):
    return [ActionStep(i + 1, action, TargetElement(selector)) for i, (action, selector) in enumerate(pairs)]


def test_pattern_id_is_deterministic():
    steps = _steps(('click', '#reports'), ('fill', 'input[name=from]'))
    assert generate_pattern_id('report', steps) == generate_pattern_id('report', _steps(
        ('click', '#reports'), ('fill', 'input[name=from]')))
    assert generate_pattern_id('report', steps).startswith('report_')


def test_pattern_id_changes_with_selector_or_task_type():
    base = generate_pattern_id('report', _steps(('click', '#reports'), ('click', '#run')))
    changed = generate_pattern_id('report', _steps(('click', '#reports'), ('click', '#run-now')))
    assert base != changed
    assert base != generate_pattern_id('dnc_check', _steps(('click', '#reports'), ('click', '#run')))


def test_pattern_id_ignores_descriptions_and_fallbacks():
    plain = _steps(('click', '#reports'))
    decorated = [ActionStep(1, 'click', TargetElement('#reports', ['text=Reports']), description='Reports tab')]
    assert generate_pattern_id('report', plain) == generate_pattern_id('report', decorated)


def test_target_locators_order():
    target = TargetElement('#a', ['#b', '', '#a', '#c'])
    assert target.locators == ['#a', '#b', '#c']
    assert TargetElement('', ['#b']).locators == ['#b']


def test_required_capabilities_from_actions():
    steps = _steps(('click', '#a'), ('fill', '#b'), ('click', '#c'), ('wait', '#d'), ('navigate', 'https://x'))
    assert extract_required_capabilities(steps) == ['mouse_interaction', 'keyboard_input', 'page_navigation']


def test_selector_kinds_and_coordinates():
    assert selector_kind('#reports') == 'structural'
    assert selector_kind('text=Reports') == 'text'
    assert selector_kind('button:has-text("Run")') == 'text'
    locator = coordinate_locator(120.7, 45)
    assert locator == 'xy=120,45'
    assert selector_kind(locator) == 'coordinate'
    assert parse_coordinates(locator) == {'x': 120, 'y': 45}
    assert parse_coordinates('#reports') is None


def test_failure_reasons_bounded():
    selector = SelectorPattern('#a')
    for i in range(MAX_FAILURE_REASONS + 5):
        selector.record_failure(f"miss {i}")
    assert len(selector.failure_reasons) == MAX_FAILURE_REASONS
    assert selector.failure_reasons[-1] == f"miss {MAX_FAILURE_REASONS + 4}"


def test_usage_history_bounded():
    stats = UsageStatistics()
    for i in range(MAX_RECENT_EXECUTIONS + 10):
        stats.add_record(ExecutionRecord(utc_now(), True, float(i)))
    assert len(stats.recent_executions) == MAX_RECENT_EXECUTIONS
    assert stats.recent_executions[0].execution_time == 10.0


def test_conditions():
    context = {'url': 'https://crm.example.com/reports/roi', 'page_state': 'logged_in', 'elements': ['#run']}
    assert PatternCondition('url_pattern', value='*/reports/*').matches(context)
    assert not PatternCondition('url_pattern', value='*/leads/*').matches(context)
    assert PatternCondition('page_state', value='logged_in').matches(context)
    assert not PatternCondition('element_present', value='#missing').matches(context)
    assert PatternCondition('something_new', value='x').matches(context)


def test_only_required_conditions_exclude(pattern_factory):
    optional = PatternCondition('url_pattern', value='*/leads/*', required=False)
    pattern = pattern_factory(conditions=[optional])
    assert pattern.applies_to({'url': 'https://crm.example.com/reports'})

    pattern.applicable_conditions.append(PatternCondition('url_pattern', value='*/leads/*'))
    assert not pattern.applies_to({'url': 'https://crm.example.com/reports'})


def test_round_trip_keeps_unknown_fields(pattern_factory):
    data = pattern_factory().to_dict()
    data['futureField'] = {'nested': True}
    data['actionSequence'][0]['hint'] = 'left nav'
    data['actionSequence'][0]['targetElement']['frame'] = 'main'
    data['usageStats']['medianExecutionTime'] = 950.0
    data['usageStats']['recentExecutions'] = [
        {'timestamp': '2024-03-01T09:00:00Z', 'success': True, 'executionTime': 900.0, 'traceId': 'abc123'},
    ]
    data['applicableConditions'] = [
        {'type': 'url_pattern', 'value': '*/reports*', 'required': True, 'priority': 2},
    ]

    restored = AutomationPattern.from_dict(data).to_dict()
    assert restored['futureField'] == {'nested': True}
    assert restored['actionSequence'][0]['hint'] == 'left nav'
    assert restored['actionSequence'][0]['targetElement']['frame'] == 'main'
    assert restored['usageStats']['medianExecutionTime'] == 950.0
    assert restored['usageStats']['recentExecutions'][0]['traceId'] == 'abc123'
    assert restored['applicableConditions'][0]['priority'] == 2


def test_parse_timestamp_formats():
    assert parse_timestamp('2024-01-05T10:00:00Z').tzinfo is not None
    assert parse_timestamp('2024-01-05T10:00:00').tzinfo is not None
    assert parse_timestamp(None) is None
