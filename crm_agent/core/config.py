from typing import Dict, Any, List, Optional
import json
import logging
from pathlib import Path
import os
from dataclasses import dataclass, asdict, field, fields

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://openrouter.ai/api/v1"
KNOWN_STRATEGIES = ('direct', 'learned-pattern', 'vision', 'position')


@dataclass
class AgentConfig:
    """Configuration options for the automation engine"""

    # Interaction limits
    max_clicks: int = 5
    step_timeout_ms: int = 5000
    strategy_timeout_s: float = 120.0

    # Strategy selection
    strategies: List[str] = field(default_factory=lambda: list(KNOWN_STRATEGIES))
    use_vision: bool = True
    screenshot_debug: bool = True

    # Pattern learning
    use_pattern_learning: bool = True
    enable_pattern_storage: bool = True
    min_success_rate: float = 0.7
    min_confidence: float = 0.6
    sweep_interval_s: float = 3600.0

    # Model settings
    model_name: str = "anthropic/claude-3.5-sonnet"
    api_base: str = DEFAULT_API_BASE

    # Browser settings
    headless: bool = True

    # Storage settings
    patterns_path: Optional[str] = None
    telemetry_path: Optional[str] = None
    screenshot_dir: Optional[str] = None

    @staticmethod
    def api_key() -> Optional[str]:
        """Read from the environment only; never stored in the config file"""
        return os.environ.get('OPENROUTER_API_KEY') or os.environ.get('OPENAI_API_KEY')


class ConfigManager:
    """Manages engine configuration per workspace"""

    def __init__(self, workspace: str):
        self.workspace = workspace
        self.base_dir = Path(workspace) / '.crm_agent'
        self.config_path = self.base_dir / 'config.json'
        self.config = self._load_config()

    def _load_config(self) -> AgentConfig:
        """Load configuration from file or create default"""
        if self.config_path.exists():
            try:
                with open(self.config_path) as f:
                    config_dict = json.load(f)
                known = {f.name for f in fields(AgentConfig)}
                config = AgentConfig(**{k: v for k, v in config_dict.items() if k in known})
                for key, default in self._default_paths().items():
                    if not getattr(config, key):
                        setattr(config, key, default)
                return config
            except (OSError, ValueError, TypeError) as e:
                logger.warning("Error loading config %s: %s", self.config_path, e)
                return self._create_default_config()
        return self._create_default_config()

    def _default_paths(self) -> Dict[str, str]:
        return {
            'patterns_path': str(self.base_dir / 'patterns' / 'automation-patterns.json'),
            'telemetry_path': str(self.base_dir / 'telemetry'),
            'screenshot_dir': str(self.base_dir / 'screenshots'),
        }

    def _create_default_config(self) -> AgentConfig:
        """Create and save default configuration"""
        config = AgentConfig(**self._default_paths())
        self.save_config(config)
        return config

    def save_config(self, config: AgentConfig) -> None:
        """Save configuration to file"""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_path, 'w') as f:
            json.dump(asdict(config), f, indent=2)
        self.config = config

    def update_config(self, updates: Dict[str, Any]) -> None:
        """Update specific configuration values; rejects invalid results"""
        current = asdict(self.config)
        unknown = set(updates) - set(current)
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(sorted(unknown))}")
        current.update(updates)
        new_config = AgentConfig(**current)
        if not self.validate_config(new_config):
            raise ValueError("Invalid configuration values")
        self.save_config(new_config)

    def reset_config(self) -> AgentConfig:
        return self._create_default_config()

    def get_config(self) -> AgentConfig:
        """Get current configuration"""
        return self.config

    @staticmethod
    def validate_config(config: AgentConfig) -> bool:
        """Validate configuration values"""
        return (
            config.max_clicks > 0
            and config.step_timeout_ms > 0
            and config.strategy_timeout_s > 0
            and config.sweep_interval_s > 0
            and 0 <= config.min_success_rate <= 1
            and 0 <= config.min_confidence <= 1
            and bool(config.strategies)
            and all(s in KNOWN_STRATEGIES for s in config.strategies)
        )
