from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional

from ..data.patterns import ACTION_KINDS


@dataclass
class ActionInstruction:
    """One interpreted primitive: either a concrete selector or a described target"""
    action: str
    description: str = ''
    selector: Optional[str] = None
    target: Optional[str] = None
    value: Optional[str] = None
    priority: int = 0

    def __post_init__(self):
        self.action = self.action.lower()
        if self.action not in ACTION_KINDS:
            raise ValueError(f"Unknown action kind: {self.action}")

    @property
    def needs_resolution(self) -> bool:
        """True when the locator has to be found from the description"""
        return not self.selector and self.action not in ('navigate', 'wait')

    def to_dict(self) -> Dict[str, Any]:
        return {
            'action': self.action,
            'description': self.description,
            'selector': self.selector,
            'target': self.target,
            'value': self.value,
            'priority': self.priority,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ActionInstruction':
        if not isinstance(data, dict):
            raise ValueError(f"Sub-task must be an object, got {type(data).__name__}")
        return cls(
            action=str(data.get('action') or 'click'),
            description=data.get('description') or '',
            selector=data.get('selector'),
            target=data.get('target'),
            value=data.get('value'),
            priority=int(data.get('priority', 0)),
        )


@dataclass
class TaskInterpretation:
    """What the user asked for, broken down far enough to execute"""
    task_type: str
    user_intent: str
    confidence: float = 1.0
    estimated_clicks: Optional[int] = None
    sub_tasks: List[ActionInstruction] = field(default_factory=list)
    target_elements: List[str] = field(default_factory=list)
    success_criteria: List[str] = field(default_factory=list)
    required_capabilities: List[str] = field(default_factory=list)
    parameters: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'taskType': self.task_type,
            'userIntent': self.user_intent,
            'confidence': self.confidence,
            'estimatedClicks': self.estimated_clicks,
            'subTasks': [s.to_dict() for s in self.sub_tasks],
            'targetElements': list(self.target_elements),
            'successCriteria': list(self.success_criteria),
            'parameters': dict(self.parameters, requiredCapabilities=list(self.required_capabilities)),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TaskInterpretation':
        """Build from model output, accepting camelCase or snake_case keys"""
        if not isinstance(data, dict):
            raise ValueError(f"Interpretation must be an object, got {type(data).__name__}")

        def pick(camel, snake, default=None):
            if camel in data:
                return data[camel]
            return data.get(snake, default)

        parameters = dict(pick('parameters', 'parameters') or {})
        capabilities = parameters.pop('requiredCapabilities', None) or data.get('required_capabilities') or []

        criteria = pick('successCriteria', 'success_criteria') or []
        if isinstance(criteria, str):
            criteria = [criteria]

        estimated = pick('estimatedClicks', 'estimated_clicks')
        sub_tasks = [ActionInstruction.from_dict(s) for s in pick('subTasks', 'sub_tasks') or []]

        return cls(
            task_type=pick('taskType', 'task_type', 'custom'),
            user_intent=pick('userIntent', 'user_intent', ''),
            confidence=float(data.get('confidence', 1.0)),
            estimated_clicks=int(estimated) if estimated is not None else None,
            sub_tasks=sub_tasks,
            target_elements=list(pick('targetElements', 'target_elements') or []),
            success_criteria=list(criteria),
            required_capabilities=list(capabilities),
            parameters=parameters,
        )

    @classmethod
    def simple(cls, task_type: str, description: str) -> 'TaskInterpretation':
        """Interpretation with no sub-tasks, for vision-only runs"""
        return cls(task_type=task_type, user_intent=description)
