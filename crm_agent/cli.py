#!/usr/bin/env python3
import click
import logging
from pathlib import Path
from typing import Optional
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from .core.config import ConfigManager, AgentConfig
from .core.controller import StrategyController
from .core.errors import PatternStoreError
from .core.perception import VisionPerception
from .core.telemetry import TelemetryManager
from .data.pattern_store import PatternStoreService, PatternSearchCriteria
from .data.scoring import SORT_FIELDS
from .environment.browser_env import BrowserEnvironment

console = Console()


def _open_store(config: AgentConfig) -> PatternStoreService:
    return PatternStoreService.from_path(
        config.patterns_path,
        sweep_interval=config.sweep_interval_s,
        min_success_rate=config.min_success_rate,
        min_confidence=config.min_confidence,
    )


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Show debug logging')
def cli(verbose: bool):
    """Adaptive browser automation for dealership CRM tasks"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(message)s',
        datefmt='[%X]',
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


@cli.command()
@click.argument('workspace', type=click.Path(exists=True))
@click.argument('url', type=str)
@click.argument('task_description', type=str)
@click.option('--task-type', default='custom', help='Task type used to look up and store patterns')
@click.option('--max-clicks', type=int, help='Interaction budget for this task')
@click.option('--no-learning', is_flag=True, help='Neither use nor update learned patterns')
@click.option('--headless/--headed', default=None, help='Override the configured browser mode')
def run(workspace: str, url: str, task_description: str, task_type: str,
        max_clicks: Optional[int], no_learning: bool, headless: Optional[bool]):
    """Execute a task against the CRM page at URL"""
    config = ConfigManager(workspace).get_config()
    store = _open_store(config)
    telemetry = TelemetryManager(config.telemetry_path)
    perception = VisionPerception(config=config) if AgentConfig.api_key() else None
    if perception is None:
        console.print("[yellow]No API key set; vision and task interpretation are disabled[/yellow]")

    env = BrowserEnvironment.launch(
        url,
        headless=config.headless if headless is None else headless,
        screenshot_dir=config.screenshot_dir,
    )
    try:
        with store:
            controller = StrategyController(env, store, perception, config, telemetry)
            task = controller.interpret(task_description, task_type)
            result = controller.execute_task(task, max_clicks, learning_enabled=not no_learning)
    finally:
        env.close()

    table = Table(title="Strategy attempts")
    table.add_column("Strategy")
    table.add_column("Result")
    table.add_column("Interactions", justify="right")
    table.add_column("Error")
    for attempt in result.attempted_strategies:
        table.add_row(
            attempt.strategy,
            "[green]success[/green]" if attempt.success else "[red]failed[/red]",
            str(attempt.interactions),
            attempt.error or "",
        )
    console.print(table)

    if result.success:
        console.print(f"\n[green]Task completed[/green] via {result.strategy_used} "
                      f"in {result.interactions} interactions ({result.duration:.1f}s)")
    else:
        console.print(f"\n[red]Task failed:[/red] {result.error}")
    if result.patterns_learned:
        console.print(f"Patterns updated: {', '.join(result.patterns_learned)}")
    if result.learning_error:
        console.print(f"[yellow]Learning error:[/yellow] {result.learning_error}")
    if not result.success:
        raise SystemExit(1)


@cli.group()
def patterns():
    """Inspect and maintain learned patterns"""
    pass


@patterns.command('list')
@click.argument('workspace', type=click.Path(exists=True))
@click.option('--task-type', help='Only patterns for this task type')
@click.option('--sort-by', type=click.Choice(SORT_FIELDS), default='success_rate')
@click.option('--limit', type=int, default=20)
def list_patterns(workspace: str, task_type: Optional[str], sort_by: str, limit: int):
    """List stored patterns"""
    store = _open_store(ConfigManager(workspace).get_config())
    found = store.find_patterns(PatternSearchCriteria(task_type=task_type, sort_by=sort_by, limit=limit))
    if not found:
        click.echo("No patterns stored")
        return

    table = Table(title=f"{len(found)} patterns")
    table.add_column("ID")
    table.add_column("Task type")
    table.add_column("Steps", justify="right")
    table.add_column("Success", justify="right")
    table.add_column("Confidence", justify="right")
    table.add_column("Runs", justify="right")
    for p in found:
        table.add_row(p.id, p.task_type, str(len(p.action_sequence)),
                      f"{p.success_rate:.0%}", f"{p.confidence:.2f}",
                      str(p.usage_stats.total_executions))
    console.print(table)


@patterns.command()
@click.argument('workspace', type=click.Path(exists=True))
def stats(workspace: str):
    """Show pattern statistics and improvement opportunities"""
    store = _open_store(ConfigManager(workspace).get_config())
    summary = store.get_statistics()

    click.echo(f"Total patterns: {summary['total_patterns']}")
    click.echo(f"Average success rate: {summary['average_success_rate']:.1%}")
    click.echo(f"Average execution time: {summary['average_execution_time']:.0f}ms")

    if summary['top_performing_patterns']:
        click.echo("\nTop performing patterns:")
        for p in summary['top_performing_patterns']:
            click.echo(f"- {p.name or p.id}: {p.success_rate:.0%} over {p.usage_stats.total_executions} runs")

    if summary['improvement_opportunities']:
        click.echo("\nImprovement opportunities:")
        for item in summary['improvement_opportunities']:
            click.echo(f"- {item}")


@patterns.command()
@click.argument('workspace', type=click.Path(exists=True))
def optimize(workspace: str):
    """Run the optimization sweep once"""
    store = _open_store(ConfigManager(workspace).get_config())
    removed = store.optimize_patterns()
    click.echo(f"Removed {len(removed)} patterns")
    for pattern_id in removed:
        click.echo(f"- {pattern_id}")


@patterns.command()
@click.argument('workspace', type=click.Path(exists=True))
@click.option('--task-type', help='Only purge patterns for this task type')
@click.confirmation_option(prompt='Delete the selected patterns?')
def purge(workspace: str, task_type: Optional[str]):
    """Delete all patterns, or those of one task type"""
    store = _open_store(ConfigManager(workspace).get_config())
    count = store.purge(task_type)
    click.echo(f"Purged {count} patterns")


@patterns.command('export')
@click.argument('workspace', type=click.Path(exists=True))
@click.argument('path', type=click.Path())
def export_patterns(workspace: str, path: str):
    """Export patterns to a JSON file"""
    store = _open_store(ConfigManager(workspace).get_config())
    try:
        count = store.export_patterns(path)
    except PatternStoreError as e:
        raise click.ClickException(str(e))
    click.echo(f"Exported {count} patterns to {path}")


@patterns.command('import')
@click.argument('workspace', type=click.Path(exists=True))
@click.argument('path', type=click.Path(exists=True))
@click.option('--overwrite', is_flag=True, help='Replace patterns that already exist')
def import_patterns(workspace: str, path: str, overwrite: bool):
    """Import patterns from a JSON export"""
    store = _open_store(ConfigManager(workspace).get_config())
    try:
        count = store.import_patterns(path, overwrite=overwrite)
    except PatternStoreError as e:
        raise click.ClickException(str(e))
    click.echo(f"Imported {count} patterns")


@cli.command()
@click.argument('workspace', type=click.Path(exists=True))
def status(workspace: str):
    """Show execution statistics"""
    config = ConfigManager(workspace).get_config()
    summary = TelemetryManager(config.telemetry_path).get_performance_summary()

    click.echo("CRM Agent Status")
    click.echo("================")
    click.echo(f"\nTotal executions: {summary['total_executions']}")
    if summary['total_executions']:
        click.echo(f"Success rate: {summary['success_rate']:.1%}")
        click.echo(f"Average interactions: {summary['avg_interactions']:.1f}")
        click.echo(f"Average duration: {summary['avg_duration']:.1f}s")

    if summary['strategies']:
        click.echo("\nStrategies:")
        for name, perf in summary['strategies'].items():
            click.echo(f"- {name}: {perf['success_rate']:.0%} success over {perf['total_uses']} attempts")


@cli.group()
def config():
    """Manage engine configuration"""
    pass


@config.command()
@click.argument('workspace', type=click.Path(exists=True))
def show(workspace: str):
    """Show current configuration"""
    current = ConfigManager(workspace).get_config()

    click.echo("\nCurrent Configuration")
    click.echo("===================")

    for key, value in current.__dict__.items():
        click.echo(f"{key}: {value}")


@config.command('set')
@click.argument('workspace', type=click.Path(exists=True))
@click.argument('key', type=str)
@click.argument('value', type=str)
def set_value(workspace: str, key: str, value: str):
    """Set a configuration value"""
    config_manager = ConfigManager(workspace)

    # Convert value to appropriate type
    if value.lower() in ('true', 'false'):
        value = value.lower() == 'true'
    elif value.replace('.', '', 1).isdigit():
        value = float(value) if '.' in value else int(value)
    elif key == 'strategies':
        value = [s.strip() for s in value.split(',') if s.strip()]

    try:
        config_manager.update_config({key: value})
    except (ValueError, TypeError) as e:
        raise click.ClickException(f"Error updating config: {e}")
    click.echo(f"Updated {key} = {value}")


@config.command()
@click.argument('workspace', type=click.Path(exists=True))
def reset(workspace: str):
    """Reset configuration to defaults"""
    ConfigManager(workspace).reset_config()
    click.echo("Configuration reset to defaults")


if __name__ == '__main__':
    cli()
