from dataclasses import dataclass
from typing import Dict, Any, Optional, List, Protocol


@dataclass
class ActionResult:
    """Outcome of one primitive action"""
    success: bool
    error: Optional[str] = None
    duration: float = 0.0

    @classmethod
    def ok(cls, duration: float = 0.0) -> 'ActionResult':
        return cls(True, duration=duration)

    @classmethod
    def failed(cls, error: str, duration: float = 0.0) -> 'ActionResult':
        return cls(False, error=error, duration=duration)


@dataclass
class NextAction:
    """Single action proposed by perception for the current screen"""
    action: str
    locator: Optional[str] = None
    coordinates: Optional[Dict[str, int]] = None
    value: Optional[str] = None
    confidence: float = 0.0
    reasoning: str = ''

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'NextAction':
        return cls(
            action=str(data.get('action') or data.get('action_kind') or 'click').lower(),
            locator=data.get('locator') or data.get('selector'),
            coordinates=data.get('coordinates'),
            value=data.get('value'),
            confidence=float(data.get('confidence', 0.0)),
            reasoning=data.get('reasoning', ''),
        )


class ActionExecutor(Protocol):
    """Performs primitive actions against the page"""

    def perform(self, action: str, locator: Optional[str], value: Optional[str] = None,
                timeout: int = 5000) -> ActionResult:
        ...

    def screenshot(self, label: str) -> Optional[str]:
        ...

    def get_page_state(self) -> Dict[str, Any]:
        ...


class Perception(Protocol):
    """Turns screenshots and descriptions into locators and actions"""

    def locate(self, description: str, screenshot: Optional[str]) -> Optional[str]:
        ...

    def next_action(self, screenshot: Optional[str], goal: str) -> Optional[NextAction]:
        ...

    def verify_completion(self, task_description: str, success_criteria: List[str],
                          page_state: Dict[str, Any]) -> bool:
        ...

    def interpret_task(self, description: str, page_state: Dict[str, Any]) -> Dict[str, Any]:
        ...
