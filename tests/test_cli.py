import json
import pytest
from click.testing import CliRunner
from crm_agent.cli import cli
from crm_agent.core.config import ConfigManager
from crm_agent.core.telemetry import TelemetryManager, ExecutionMetrics
from crm_agent.data.repository import PatternRepository


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def workspace(tmp_path):
    return tmp_path


def _seed(workspace, *patterns):
    config = ConfigManager(str(workspace)).get_config()
    PatternRepository(config.patterns_path).save({p.id: p for p in patterns})


def test_config_show_set_reset(runner, workspace):
    result = runner.invoke(cli, ['config', 'show', str(workspace)])
    assert result.exit_code == 0
    assert 'max_clicks: 5' in result.output

    result = runner.invoke(cli, ['config', 'set', str(workspace), 'max_clicks', '7'])
    assert result.exit_code == 0
    assert ConfigManager(str(workspace)).get_config().max_clicks == 7

    runner.invoke(cli, ['config', 'set', str(workspace), 'use_vision', 'false'])
    runner.invoke(cli, ['config', 'set', str(workspace), 'strategies', 'direct, position'])
    config = ConfigManager(str(workspace)).get_config()
    assert config.use_vision is False
    assert config.strategies == ['direct', 'position']

    result = runner.invoke(cli, ['config', 'reset', str(workspace)])
    assert result.exit_code == 0
    assert ConfigManager(str(workspace)).get_config().max_clicks == 5


def test_config_set_rejects_bad_values(runner, workspace):
    result = runner.invoke(cli, ['config', 'set', str(workspace), 'min_confidence', '3'])
    assert result.exit_code != 0
    assert 'Error updating config' in result.output

    result = runner.invoke(cli, ['config', 'set', str(workspace), 'no_such_key', '1'])
    assert result.exit_code != 0


def test_patterns_list_and_stats(runner, workspace, pattern_factory):
    good = pattern_factory(selectors=('#a',), success_rate=0.9, total=10)
    weak = pattern_factory(selectors=('#b',), success_rate=0.5, total=6)
    _seed(workspace, good, weak)

    result = runner.invoke(cli, ['patterns', 'list', str(workspace)])
    assert result.exit_code == 0
    assert good.id in result.output and weak.id in result.output

    result = runner.invoke(cli, ['patterns', 'stats', str(workspace)])
    assert result.exit_code == 0
    assert 'Total patterns: 2' in result.output
    assert 'Improvement opportunities' in result.output


def test_patterns_list_empty(runner, workspace):
    result = runner.invoke(cli, ['patterns', 'list', str(workspace)])
    assert result.exit_code == 0
    assert 'No patterns stored' in result.output


def test_patterns_optimize_and_purge(runner, workspace, pattern_factory):
    unreliable = pattern_factory(selectors=('#a',), success_rate=0.1, total=20)
    keep = pattern_factory(selectors=('#b',), success_rate=0.9, total=20)
    other = pattern_factory(selectors=('#c',), task_type='dnc_check')
    _seed(workspace, unreliable, keep, other)

    result = runner.invoke(cli, ['patterns', 'optimize', str(workspace)])
    assert result.exit_code == 0
    assert 'Removed 1 patterns' in result.output
    assert unreliable.id in result.output

    result = runner.invoke(cli, ['patterns', 'purge', str(workspace), '--task-type', 'report', '--yes'])
    assert result.exit_code == 0
    assert 'Purged 1 patterns' in result.output

    config = ConfigManager(str(workspace)).get_config()
    assert list(PatternRepository(config.patterns_path).load()) == [other.id]


def test_patterns_export_import(runner, workspace, tmp_path_factory, pattern_factory):
    pattern = pattern_factory()
    _seed(workspace, pattern)
    export_path = tmp_path_factory.mktemp('exports') / 'patterns.json'

    result = runner.invoke(cli, ['patterns', 'export', str(workspace), str(export_path)])
    assert result.exit_code == 0
    assert json.loads(export_path.read_text())['patterns'][0]['id'] == pattern.id

    target = tmp_path_factory.mktemp('other')
    result = runner.invoke(cli, ['patterns', 'import', str(target), str(export_path)])
    assert result.exit_code == 0
    assert 'Imported 1 patterns' in result.output


def test_import_bad_file_fails_cleanly(runner, workspace):
    bad = workspace / 'bad.json'
    bad.write_text('{"items": []}')
    result = runner.invoke(cli, ['patterns', 'import', str(workspace), str(bad)])
    assert result.exit_code != 0
    assert 'Error' in result.output


def test_status(runner, workspace):
    result = runner.invoke(cli, ['status', str(workspace)])
    assert result.exit_code == 0
    assert 'Total executions: 0' in result.output

    config = ConfigManager(str(workspace)).get_config()
    TelemetryManager(config.telemetry_path).record_execution(
        ExecutionMetrics(task_type='report', success=True, duration=1.5, interactions=2,
                         strategy_used='direct', attempts=1),
        [{'strategy': 'direct', 'success': True, 'interactions': 2}],
    )
    result = runner.invoke(cli, ['status', str(workspace)])
    assert 'Total executions: 1' in result.output
    assert 'direct: 100% success over 1 attempts' in result.output
