"""Example usage of the CRM automation engine"""
import logging
from pathlib import Path
from crm_agent.core.config import ConfigManager
from crm_agent.core.controller import StrategyController
from crm_agent.core.perception import VisionPerception
from crm_agent.core.task import TaskInterpretation, ActionInstruction
from crm_agent.data.pattern_store import PatternStoreService
from crm_agent.environment.browser_env import BrowserEnvironment


def main():
    logging.basicConfig(level=logging.INFO)

    workspace = Path.cwd()
    config = ConfigManager(str(workspace)).get_config()

    # A pre-interpreted task: the direct strategy can run it without a model
    task = TaskInterpretation(
        task_type='report',
        user_intent='Open the lead source ROI report',
        estimated_clicks=2,
        sub_tasks=[
            ActionInstruction('click', selector='text=Insights', description='Insights menu'),
            ActionInstruction('click', selector='text=Lead Source ROI', description='Report link'),
        ],
        success_criteria=['The Lead Source ROI report is displayed'],
    )

    perception = VisionPerception(config=config) if config.api_key() else None
    store = PatternStoreService.from_path(config.patterns_path)

    with BrowserEnvironment.launch('https://crm.example.com', headless=config.headless,
                                   screenshot_dir=config.screenshot_dir) as env, store:
        controller = StrategyController(env, store, perception, config)
        for attempt in range(3):
            result = controller.execute_task(task)
            print(f"\nRun {attempt + 1}: success={result.success} via {result.strategy_used}")
            for tried in result.attempted_strategies:
                print(f"  {tried.strategy}: {'ok' if tried.success else tried.error}")
            print(f"  Patterns updated: {result.patterns_learned}")


if __name__ == "__main__":
    main()
