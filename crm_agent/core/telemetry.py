import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, List, Optional
import numpy as np

logger = logging.getLogger(__name__)

MAX_HISTORY = 1000


class DateTimeEncoder(json.JSONEncoder):
    def default(self, obj):
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


class ExecutionMetrics:
    """Metrics for one task execution"""
    def __init__(self, task_type='custom', success=False, duration=0.0, interactions=0,
                 strategy_used=None, attempts=0, learned=False, timestamp=None):
        self.task_type = task_type
        self.success = success
        self.duration = duration
        self.interactions = interactions
        self.strategy_used = strategy_used
        self.attempts = attempts
        self.learned = learned
        self.timestamp = timestamp or datetime.now()

    def to_dict(self):
        return {
            'task_type': self.task_type,
            'success': self.success,
            'duration': self.duration,
            'interactions': self.interactions,
            'strategy_used': self.strategy_used,
            'attempts': self.attempts,
            'learned': self.learned,
            'timestamp': self.timestamp,
        }

    @classmethod
    def from_dict(cls, data):
        data = dict(data)
        if isinstance(data.get('timestamp'), str):
            data['timestamp'] = datetime.fromisoformat(data['timestamp'])
        return cls(**data)


class TelemetryManager:
    """Collects per-task execution metrics and per-strategy counters"""

    def __init__(self, storage_path: str):
        self.storage_path = Path(storage_path)
        self.storage_path.mkdir(parents=True, exist_ok=True)
        self.history: List[ExecutionMetrics] = []
        self.strategy_stats: Dict[str, Dict[str, float]] = {}
        self._load_metrics()

    def record_execution(self, metrics: ExecutionMetrics,
                         attempted: Optional[List[Dict[str, Any]]] = None) -> None:
        """Record one task run and the strategies it tried"""
        if not isinstance(metrics, ExecutionMetrics):
            metrics = ExecutionMetrics(**metrics)
        self.history.append(metrics)
        if len(self.history) > MAX_HISTORY:
            self.history = self.history[-MAX_HISTORY:]

        for attempt in attempted or []:
            stats = self.strategy_stats.setdefault(attempt['strategy'], {
                'uses': 0,
                'successes': 0,
                'interactions': 0,
            })
            stats['uses'] += 1
            if attempt.get('success'):
                stats['successes'] += 1
            stats['interactions'] += attempt.get('interactions', 0)

        self._save_metrics()

    def get_strategy_performance(self, strategy: Optional[str] = None) -> Dict[str, float]:
        """Success rate and average interactions for one strategy or all of them"""
        if strategy is None:
            selected = list(self.strategy_stats.values())
        else:
            selected = [self.strategy_stats.get(strategy, {})]

        uses = sum(s.get('uses', 0) for s in selected)
        if uses == 0:
            return {'success_rate': 0.0, 'avg_interactions': 0.0, 'total_uses': 0}
        return {
            'success_rate': sum(s.get('successes', 0) for s in selected) / uses,
            'avg_interactions': sum(s.get('interactions', 0) for s in selected) / uses,
            'total_uses': uses,
        }

    def get_execution_trends(self, window: int = 10) -> Dict[str, float]:
        """Slope of a linear fit over the most recent executions"""
        recent = self.history[-window:]
        if not recent:
            return {}

        x = np.arange(len(recent))
        trends = {}
        for name in ['success', 'duration', 'interactions', 'attempts']:
            y = np.array([float(getattr(m, name)) for m in recent])
            if len(y) > 1:
                slope = np.polyfit(x, y, 1)[0]
                trends[f"{name}_trend"] = float(slope)
            else:
                trends[f"{name}_trend"] = 0.0
        return trends

    def get_performance_summary(self) -> Dict[str, Any]:
        summary: Dict[str, Any] = {
            'total_executions': len(self.history),
            'strategies': {
                name: self.get_strategy_performance(name) for name in sorted(self.strategy_stats)
            },
            'trends': self.get_execution_trends(),
        }
        if not self.history:
            return summary

        successes = np.array([1.0 if m.success else 0.0 for m in self.history])
        durations = np.array([m.duration for m in self.history])
        interactions = np.array([m.interactions for m in self.history])
        summary.update({
            'success_rate': float(np.mean(successes)),
            'avg_duration': float(np.mean(durations)),
            'max_duration': float(np.max(durations)),
            'avg_interactions': float(np.mean(interactions)),
            'learned_rate': float(np.mean([1.0 if m.learned else 0.0 for m in self.history])),
        })
        return summary

    def _load_metrics(self):
        metrics_file = self.storage_path / "metrics.json"
        if not metrics_file.exists():
            return
        try:
            with open(metrics_file) as f:
                data = json.load(f)
            self.strategy_stats = data.get('strategy_stats', {})
            self.history = [ExecutionMetrics.from_dict(m) for m in data.get('executions', [])]
        except (OSError, ValueError, TypeError) as e:
            logger.warning("Ignoring unreadable telemetry file %s: %s", metrics_file, e)

    def _save_metrics(self):
        metrics_file = self.storage_path / "metrics.json"
        data = {
            'strategy_stats': self.strategy_stats,
            'executions': [m.to_dict() for m in self.history],
        }
        try:
            with open(metrics_file, 'w') as f:
                json.dump(data, f, cls=DateTimeEncoder)
        except OSError as e:
            logger.warning("Could not save telemetry to %s: %s", metrics_file, e)
