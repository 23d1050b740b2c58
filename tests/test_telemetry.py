import json
import pytest
from datetime import datetime, timedelta
from crm_agent.core.telemetry import TelemetryManager, ExecutionMetrics, MAX_HISTORY

def _attempt(strategy, success, interactions):
    return {'strategy': strategy, 'success': success, 'interactions': interactions}

def test_telemetry_recording(tmp_path):
    # Setup
    telemetry = TelemetryManager(str(tmp_path))

    # Record one run that fell back from direct to vision
    metrics = ExecutionMetrics(task_type='report', success=True, duration=2.5, interactions=4,
                               strategy_used='vision', attempts=2)
    telemetry.record_execution(metrics, [_attempt('direct', False, 1), _attempt('vision', True, 3)])

    # Verify metrics were recorded
    assert len(telemetry.history) == 1
    assert telemetry.strategy_stats['direct'] == {'uses': 1, 'successes': 0, 'interactions': 1}
    assert telemetry.get_strategy_performance('vision')['success_rate'] == 1.0
    assert telemetry.get_strategy_performance()['total_uses'] == 2
    assert telemetry.get_strategy_performance('position') == {
        'success_rate': 0.0, 'avg_interactions': 0.0, 'total_uses': 0}

def test_metrics_persistence(tmp_path):
    telemetry = TelemetryManager(str(tmp_path))
    telemetry.record_execution({'task_type': 'report', 'success': True, 'duration': 1.0},
                               [_attempt('direct', True, 2)])

    # Create new manager and verify metrics loaded
    new_telemetry = TelemetryManager(str(tmp_path))
    assert len(new_telemetry.history) == 1
    assert isinstance(new_telemetry.history[0].timestamp, datetime)
    assert new_telemetry.strategy_stats['direct']['uses'] == 1

def test_unreadable_metrics_file_is_ignored(tmp_path):
    (tmp_path / 'metrics.json').write_text('not json')
    telemetry = TelemetryManager(str(tmp_path))
    assert telemetry.history == []

def test_history_is_bounded(tmp_path):
    telemetry = TelemetryManager(str(tmp_path))
    telemetry.history = [ExecutionMetrics() for _ in range(MAX_HISTORY)]
    telemetry.record_execution(ExecutionMetrics(task_type='dnc_check'))
    assert len(telemetry.history) == MAX_HISTORY
    assert telemetry.history[-1].task_type == 'dnc_check'

def test_execution_trends(tmp_path):
    telemetry = TelemetryManager(str(tmp_path))
    assert telemetry.get_execution_trends() == {}

    start = datetime.now() - timedelta(minutes=10)
    for i in range(5):
        telemetry.history.append(ExecutionMetrics(
            success=True, duration=10.0 - i, interactions=3, attempts=1,
            timestamp=start + timedelta(minutes=i)))

    trends = telemetry.get_execution_trends()
    assert trends['duration_trend'] == pytest.approx(-1.0)
    assert trends['interactions_trend'] == pytest.approx(0.0)

def test_performance_summary(tmp_path):
    telemetry = TelemetryManager(str(tmp_path))
    assert telemetry.get_performance_summary()['total_executions'] == 0

    telemetry.record_execution(ExecutionMetrics(success=True, duration=2.0, interactions=2, learned=True),
                               [_attempt('learned-pattern', True, 2)])
    telemetry.record_execution(ExecutionMetrics(success=False, duration=4.0, interactions=5),
                               [_attempt('direct', False, 5)])

    summary = telemetry.get_performance_summary()
    assert summary['total_executions'] == 2
    assert summary['success_rate'] == 0.5
    assert summary['avg_duration'] == 3.0
    assert summary['max_duration'] == 4.0
    assert summary['learned_rate'] == 0.5
    assert list(summary['strategies']) == ['direct', 'learned-pattern']

    saved = json.loads((tmp_path / 'metrics.json').read_text())
    assert len(saved['executions']) == 2
