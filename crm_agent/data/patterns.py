from dataclasses import dataclass, field
from datetime import datetime, timezone
from fnmatch import fnmatch
from typing import List, Dict, Any, Optional
import hashlib

MAX_RECENT_EXECUTIONS = 50
MAX_FAILURE_REASONS = 10

ACTION_KINDS = ('click', 'fill', 'select', 'navigate', 'wait', 'verify')

# Actions that touch the page and therefore need a matching capability
CAPABILITY_BY_ACTION = {
    'click': 'mouse_interaction',
    'fill': 'keyboard_input',
    'select': 'dropdown_interaction',
    'navigate': 'page_navigation',
}

COORDINATE_PREFIX = 'xy='


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value) -> Optional[datetime]:
    """Parse an ISO timestamp as written by this package or older JSON exports"""
    if value is None or isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def age_in_days(value: Optional[datetime], now: Optional[datetime] = None) -> float:
    if value is None:
        return float('inf')
    now = now or utc_now()
    return (now - value).total_seconds() / 86400


def selector_kind(locator: str) -> str:
    """Classify a locator as coordinate, text or structural"""
    if locator.startswith(COORDINATE_PREFIX):
        return 'coordinate'
    if locator.startswith('text=') or ':has-text(' in locator:
        return 'text'
    return 'structural'


def coordinate_locator(x: float, y: float) -> str:
    return f"{COORDINATE_PREFIX}{int(x)},{int(y)}"


def parse_coordinates(locator: str) -> Optional[Dict[str, int]]:
    if not locator or not locator.startswith(COORDINATE_PREFIX):
        return None
    x, y = locator[len(COORDINATE_PREFIX):].split(',', 1)
    return {'x': int(float(x)), 'y': int(float(y))}


def _split_known(data: Dict[str, Any], names: Dict[str, str]) -> Dict[str, Any]:
    """Return the keys of data that no field claims, so they survive a round trip"""
    known = set(names.values())
    return {k: v for k, v in data.items() if k not in known}


@dataclass
class TargetElement:
    """Where an action step points: a primary locator plus ordered fallbacks"""
    primary_selector: str
    fallback_selectors: List[str] = field(default_factory=list)
    coordinates: Optional[Dict[str, int]] = None
    visual_description: str = ''
    extra: Dict[str, Any] = field(default_factory=dict, repr=False)

    _NAMES = {
        'primary_selector': 'primarySelector',
        'fallback_selectors': 'fallbackSelectors',
        'coordinates': 'coordinates',
        'visual_description': 'visualDescription',
    }

    @property
    def locators(self) -> List[str]:
        """Primary locator first, then fallbacks, without blanks or repeats"""
        ordered = []
        for locator in [self.primary_selector] + list(self.fallback_selectors):
            if locator and locator not in ordered:
                ordered.append(locator)
        return ordered

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data.update({
            'primarySelector': self.primary_selector,
            'fallbackSelectors': list(self.fallback_selectors),
            'visualDescription': self.visual_description,
        })
        if self.coordinates is not None:
            data['coordinates'] = dict(self.coordinates)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TargetElement':
        return cls(
            primary_selector=data.get('primarySelector', ''),
            fallback_selectors=list(data.get('fallbackSelectors', [])),
            coordinates=data.get('coordinates'),
            visual_description=data.get('visualDescription', ''),
            extra=_split_known(data, cls._NAMES),
        )


@dataclass
class ActionStep:
    """One primitive in a remembered sequence"""
    step_number: int
    action: str
    target: TargetElement
    description: str = ''
    parameters: Dict[str, Any] = field(default_factory=dict)
    timeout: int = 5000
    max_retries: int = 3
    success_rate: float = 1.0
    extra: Dict[str, Any] = field(default_factory=dict, repr=False)

    _NAMES = {
        'step_number': 'stepNumber',
        'action': 'action',
        'target': 'targetElement',
        'description': 'description',
        'parameters': 'parameters',
        'timeout': 'timeout',
        'max_retries': 'maxRetries',
        'success_rate': 'successRate',
    }

    @property
    def capability(self) -> Optional[str]:
        return CAPABILITY_BY_ACTION.get(self.action)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data.update({
            'stepNumber': self.step_number,
            'action': self.action,
            'description': self.description,
            'targetElement': self.target.to_dict(),
            'parameters': dict(self.parameters),
            'timeout': self.timeout,
            'maxRetries': self.max_retries,
            'successRate': self.success_rate,
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ActionStep':
        return cls(
            step_number=int(data.get('stepNumber', 0)),
            action=data.get('action', 'click'),
            target=TargetElement.from_dict(data.get('targetElement', {})),
            description=data.get('description', ''),
            parameters=dict(data.get('parameters') or {}),
            timeout=int(data.get('timeout', 5000)),
            max_retries=int(data.get('maxRetries', 3)),
            success_rate=float(data.get('successRate', 1.0)),
            extra=_split_known(data, cls._NAMES),
        )


@dataclass
class SelectorPattern:
    """A locator with its observed reliability"""
    selector: str
    type: str = 'structural'
    reliability: float = 1.0
    context: str = ''
    last_worked: Optional[datetime] = None
    failure_reasons: List[str] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict, repr=False)

    _NAMES = {
        'selector': 'selector',
        'type': 'type',
        'reliability': 'reliability',
        'context': 'context',
        'last_worked': 'lastWorked',
        'failure_reasons': 'failureReasons',
    }

    def record_failure(self, reason: str) -> None:
        self.failure_reasons.append(reason)
        if len(self.failure_reasons) > MAX_FAILURE_REASONS:
            self.failure_reasons = self.failure_reasons[-MAX_FAILURE_REASONS:]

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data.update({
            'selector': self.selector,
            'type': self.type,
            'reliability': self.reliability,
            'context': self.context,
            'lastWorked': format_timestamp(self.last_worked),
            'failureReasons': list(self.failure_reasons),
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SelectorPattern':
        return cls(
            selector=data.get('selector', ''),
            type=data.get('type', 'structural'),
            reliability=float(data.get('reliability', 1.0)),
            context=data.get('context', ''),
            last_worked=parse_timestamp(data.get('lastWorked')),
            failure_reasons=list(data.get('failureReasons', [])),
            extra=_split_known(data, cls._NAMES),
        )


@dataclass
class PatternCondition:
    """A predicate restricting where a pattern may be used"""
    type: str
    condition: str = ''
    value: Any = None
    required: bool = True
    extra: Dict[str, Any] = field(default_factory=dict, repr=False)

    _NAMES = {
        'type': 'type',
        'condition': 'condition',
        'value': 'value',
        'required': 'required',
    }

    def matches(self, context: Dict[str, Any]) -> bool:
        """Check the condition against a context map; unknown types always pass"""
        if self.type == 'url_pattern':
            url = context.get('url')
            return url is None or fnmatch(url, str(self.value))
        if self.type == 'page_state':
            state = context.get('page_state')
            return state is None or state == self.value
        if self.type == 'element_present':
            elements = context.get('elements')
            return elements is None or self.value in elements
        return True

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data.update({
            'type': self.type,
            'condition': self.condition,
            'value': self.value,
            'required': self.required,
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PatternCondition':
        return cls(
            type=data.get('type', ''),
            condition=data.get('condition', ''),
            value=data.get('value'),
            required=bool(data.get('required', True)),
            extra=_split_known(data, cls._NAMES),
        )


@dataclass
class ExecutionRecord:
    timestamp: datetime
    success: bool
    execution_time: float
    context: Dict[str, Any] = field(default_factory=dict)
    error_details: Optional[str] = None
    performance_metrics: Dict[str, float] = field(default_factory=dict)
    extra: Dict[str, Any] = field(default_factory=dict, repr=False)

    _NAMES = {
        'timestamp': 'timestamp',
        'success': 'success',
        'execution_time': 'executionTime',
        'context': 'context',
        'error_details': 'errorDetails',
        'performance_metrics': 'performanceMetrics',
    }

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data.update({
            'timestamp': format_timestamp(self.timestamp),
            'success': self.success,
            'executionTime': self.execution_time,
            'context': self.context,
            'performanceMetrics': dict(self.performance_metrics),
        })
        if self.error_details is not None:
            data['errorDetails'] = self.error_details
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ExecutionRecord':
        return cls(
            timestamp=parse_timestamp(data.get('timestamp')) or utc_now(),
            success=bool(data.get('success', False)),
            execution_time=float(data.get('executionTime', 0.0)),
            context=dict(data.get('context') or {}),
            error_details=data.get('errorDetails'),
            performance_metrics=dict(data.get('performanceMetrics') or {}),
            extra=_split_known(data, cls._NAMES),
        )


@dataclass
class ExecutionOutcome:
    """Result of one run of a recipe, as reported to the pattern store"""
    success: bool
    execution_time: float
    context: Dict[str, Any] = field(default_factory=dict)
    error_details: Optional[str] = None
    metrics: Dict[str, float] = field(default_factory=dict)

    def performance_metrics(self) -> Dict[str, float]:
        metrics = {
            'executionTime': self.execution_time,
            'interactions': 0,
            'errorsEncountered': 0 if self.success else 1,
        }
        metrics.update(self.metrics)
        return metrics

    def to_record(self, timestamp: Optional[datetime] = None) -> ExecutionRecord:
        return ExecutionRecord(
            timestamp=timestamp or utc_now(),
            success=self.success,
            execution_time=self.execution_time,
            context=dict(self.context),
            error_details=self.error_details,
            performance_metrics=self.performance_metrics(),
        )


@dataclass
class UsageStatistics:
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    average_execution_time: float = 0.0
    fastest_execution: float = 0.0
    slowest_execution: float = 0.0
    recent_executions: List[ExecutionRecord] = field(default_factory=list)
    improvement_trends: List[Dict[str, Any]] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict, repr=False)

    _NAMES = {
        'total_executions': 'totalExecutions',
        'successful_executions': 'successfulExecutions',
        'failed_executions': 'failedExecutions',
        'average_execution_time': 'averageExecutionTime',
        'fastest_execution': 'fastestExecution',
        'slowest_execution': 'slowestExecution',
        'recent_executions': 'recentExecutions',
        'improvement_trends': 'improvementTrends',
    }

    def add_record(self, record: ExecutionRecord) -> None:
        """Append a record, dropping the oldest past the cap"""
        self.recent_executions.append(record)
        if len(self.recent_executions) > MAX_RECENT_EXECUTIONS:
            self.recent_executions = self.recent_executions[-MAX_RECENT_EXECUTIONS:]

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data.update({
            'totalExecutions': self.total_executions,
            'successfulExecutions': self.successful_executions,
            'failedExecutions': self.failed_executions,
            'averageExecutionTime': self.average_execution_time,
            'fastestExecution': self.fastest_execution,
            'slowestExecution': self.slowest_execution,
            'recentExecutions': [r.to_dict() for r in self.recent_executions],
            'improvementTrends': list(self.improvement_trends),
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UsageStatistics':
        return cls(
            total_executions=int(data.get('totalExecutions', 0)),
            successful_executions=int(data.get('successfulExecutions', 0)),
            failed_executions=int(data.get('failedExecutions', 0)),
            average_execution_time=float(data.get('averageExecutionTime', 0.0)),
            fastest_execution=float(data.get('fastestExecution', 0.0)),
            slowest_execution=float(data.get('slowestExecution', 0.0)),
            recent_executions=[ExecutionRecord.from_dict(r) for r in data.get('recentExecutions', [])],
            improvement_trends=list(data.get('improvementTrends', [])),
            extra=_split_known(data, cls._NAMES),
        )


@dataclass
class AutomationPattern:
    """A remembered, scored recipe for one task type"""
    id: str
    task_type: str
    action_sequence: List[ActionStep]
    selectors: List[SelectorPattern] = field(default_factory=list)
    name: str = ''
    description: str = ''
    timing: Dict[str, Any] = field(default_factory=dict)
    success_rate: float = 1.0
    execution_count: int = 1
    average_execution_time: float = 0.0
    last_successful_execution: Optional[datetime] = None
    applicable_conditions: List[PatternCondition] = field(default_factory=list)
    required_capabilities: List[str] = field(default_factory=list)
    environment_factors: List[Dict[str, Any]] = field(default_factory=list)
    created_date: datetime = field(default_factory=utc_now)
    last_updated: datetime = field(default_factory=utc_now)
    confidence: float = 0.8
    tags: List[str] = field(default_factory=list)
    priority: str = 'medium'
    usage_stats: UsageStatistics = field(default_factory=UsageStatistics)
    extra: Dict[str, Any] = field(default_factory=dict, repr=False)

    _NAMES = {
        'id': 'id',
        'task_type': 'taskType',
        'action_sequence': 'actionSequence',
        'selectors': 'selectors',
        'name': 'name',
        'description': 'description',
        'timing': 'timing',
        'success_rate': 'successRate',
        'execution_count': 'executionCount',
        'average_execution_time': 'averageExecutionTime',
        'last_successful_execution': 'lastSuccessfulExecution',
        'applicable_conditions': 'applicableConditions',
        'required_capabilities': 'requiredCapabilities',
        'environment_factors': 'environmentFactors',
        'created_date': 'createdDate',
        'last_updated': 'lastUpdated',
        'confidence': 'confidence',
        'tags': 'tags',
        'priority': 'priority',
        'usage_stats': 'usageStats',
    }

    def applies_to(self, context: Dict[str, Any]) -> bool:
        """True when every required condition holds for the context"""
        return all(c.matches(context) for c in self.applicable_conditions if c.required)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data.update({
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'taskType': self.task_type,
            'actionSequence': [s.to_dict() for s in self.action_sequence],
            'selectors': [s.to_dict() for s in self.selectors],
            'timing': dict(self.timing),
            'successRate': self.success_rate,
            'executionCount': self.execution_count,
            'averageExecutionTime': self.average_execution_time,
            'lastSuccessfulExecution': format_timestamp(self.last_successful_execution),
            'applicableConditions': [c.to_dict() for c in self.applicable_conditions],
            'requiredCapabilities': list(self.required_capabilities),
            'environmentFactors': list(self.environment_factors),
            'createdDate': format_timestamp(self.created_date),
            'lastUpdated': format_timestamp(self.last_updated),
            'confidence': self.confidence,
            'tags': list(self.tags),
            'priority': self.priority,
            'usageStats': self.usage_stats.to_dict(),
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AutomationPattern':
        return cls(
            id=data['id'],
            task_type=data.get('taskType', ''),
            action_sequence=[ActionStep.from_dict(s) for s in data.get('actionSequence', [])],
            selectors=[SelectorPattern.from_dict(s) for s in data.get('selectors', [])],
            name=data.get('name', ''),
            description=data.get('description', ''),
            timing=dict(data.get('timing') or {}),
            success_rate=float(data.get('successRate', 0.0)),
            execution_count=int(data.get('executionCount', 0)),
            average_execution_time=float(data.get('averageExecutionTime', 0.0)),
            last_successful_execution=parse_timestamp(data.get('lastSuccessfulExecution')),
            applicable_conditions=[PatternCondition.from_dict(c) for c in data.get('applicableConditions', [])],
            required_capabilities=list(data.get('requiredCapabilities', [])),
            environment_factors=list(data.get('environmentFactors', [])),
            created_date=parse_timestamp(data.get('createdDate')) or utc_now(),
            last_updated=parse_timestamp(data.get('lastUpdated')) or utc_now(),
            confidence=float(data.get('confidence', 0.0)),
            tags=list(data.get('tags', [])),
            priority=data.get('priority', 'medium'),
            usage_stats=UsageStatistics.from_dict(data.get('usageStats') or {}),
            extra=_split_known(data, cls._NAMES),
        )


def hash_action_sequence(steps: List[ActionStep]) -> str:
    """Stable digest of the (action, primary selector) pairs of a sequence"""
    sequence = '|'.join(
        f"{step.action.strip().lower()}:{step.target.primary_selector.strip()}"
        for step in steps
    )
    return hashlib.sha1(sequence.encode('utf-8')).hexdigest()[:12]


def generate_pattern_id(task_type: str, steps: List[ActionStep]) -> str:
    return f"{task_type}_{hash_action_sequence(steps)}"


def extract_required_capabilities(steps: List[ActionStep]) -> List[str]:
    capabilities = []
    for step in steps:
        capability = step.capability
        if capability and capability not in capabilities:
            capabilities.append(capability)
    return capabilities
