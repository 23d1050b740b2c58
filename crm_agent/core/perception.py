from typing import List, Dict, Any, Optional
from pathlib import Path
import base64
import json
import logging
import re

from openai import OpenAI, OpenAIError

from ..environment.interfaces import NextAction
from .config import AgentConfig
from .errors import PerceptionError

logger = logging.getLogger(__name__)

JSON_OBJECT = re.compile(r'\{[\s\S]*\}')


def extract_json(content: Optional[str]) -> Dict[str, Any]:
    """Pull the outermost JSON object out of a model reply"""
    if not content:
        raise PerceptionError("Empty response from vision model")
    match = JSON_OBJECT.search(content)
    if not match:
        raise PerceptionError("No JSON found in vision model response")
    try:
        data = json.loads(match.group(0))
    except ValueError as e:
        raise PerceptionError(f"Malformed JSON in vision model response: {e}") from e
    if not isinstance(data, dict):
        raise PerceptionError("Vision model response is not a JSON object")
    return data


class VisionPerception:
    """Perception backed by a vision chat model on an OpenAI-compatible API"""

    def __init__(self, client=None, api_key: Optional[str] = None,
                 config: Optional[AgentConfig] = None):
        self.config = config or AgentConfig()
        self.client = client
        if self.client is None:
            self.client = OpenAI(
                api_key=api_key or AgentConfig.api_key(),
                base_url=self.config.api_base,
            )
        self.system_context = (
            "You are an expert at operating dealership CRM web applications "
            "through a browser. Always answer with a single JSON object."
        )

    def _encode_screenshot(self, screenshot: Optional[str]) -> Optional[str]:
        if not screenshot:
            return None
        path = Path(screenshot)
        if not path.exists():
            logger.debug("Screenshot %s not found, sending text only", screenshot)
            return None
        return base64.b64encode(path.read_bytes()).decode('ascii')

    def chat_completion(self, prompt: str, screenshot: Optional[str] = None,
                        max_tokens: int = 1000, temperature: float = 0.1) -> Dict[str, Any]:
        """Send one prompt (plus optional screenshot) and return the parsed JSON reply"""
        content: List[Dict[str, Any]] = [{"type": "text", "text": prompt}]
        image = self._encode_screenshot(screenshot)
        if image:
            content.append({
                "type": "image_url",
                "image_url": {"url": f"data:image/png;base64,{image}"},
            })

        try:
            response = self.client.chat.completions.create(
                model=self.config.model_name,
                messages=[
                    {"role": "system", "content": self.system_context},
                    {"role": "user", "content": content},
                ],
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except OpenAIError as e:
            raise PerceptionError(f"Vision model request failed: {e}") from e

        if not response.choices:
            raise PerceptionError("No choices in vision model response")
        return extract_json(response.choices[0].message.content)

    def locate(self, description: str, screenshot: Optional[str]) -> Optional[str]:
        prompt = f"""Find this element on the page: {description}

Respond in JSON format:
{{"found": true|false, "selector": "Playwright selector or null", "confidence": 0.0-1.0}}"""
        data = self.chat_completion(prompt, screenshot)
        if not data.get('found') or not data.get('selector'):
            logger.info("Vision model could not locate '%s'", description)
            return None
        return data['selector']

    def next_action(self, screenshot: Optional[str], goal: str) -> Optional[NextAction]:
        prompt = f"""GOAL: {goal}

Look at the current page and choose the single best next action.

Respond in JSON format:
{{
  "action": "click|fill|select|navigate|wait",
  "locator": "Playwright selector or null",
  "coordinates": {{"x": 123, "y": 456}} or null,
  "value": "text to type, option to select or URL, or null",
  "confidence": 0.0-1.0,
  "reasoning": "why this action moves toward the goal"
}}"""
        data = self.chat_completion(prompt, screenshot)
        if not data.get('action'):
            return None
        proposal = NextAction.from_dict(data)
        logger.debug("Vision proposed %s on %s (confidence %.2f)",
                     proposal.action, proposal.locator or proposal.coordinates, proposal.confidence)
        return proposal

    def verify_completion(self, task_description: str, success_criteria: List[str],
                          page_state: Dict[str, Any]) -> bool:
        criteria = '\n'.join(f"- {c}" for c in success_criteria) or '- The task is visibly complete'
        prompt = f"""TASK: {task_description}

SUCCESS CRITERIA:
{criteria}

CURRENT PAGE: {json.dumps(page_state, default=str)}

Respond in JSON format:
{{"complete": true|false, "reasoning": "..."}}"""
        data = self.chat_completion(prompt, max_tokens=200)
        return bool(data.get('complete'))

    def interpret_task(self, description: str, page_state: Dict[str, Any]) -> Dict[str, Any]:
        prompt = f"""Interpret this CRM automation request: {description}

CURRENT PAGE: {json.dumps(page_state, default=str)}

Respond in JSON format:
{{
  "taskType": "report|lead_activity|dnc_check|custom",
  "userIntent": "one sentence",
  "confidence": 0.0-1.0,
  "estimatedClicks": 3,
  "subTasks": [
    {{"action": "click|fill|select|navigate|wait|verify", "target": "element description",
      "selector": "Playwright selector if known", "value": null, "description": "...", "priority": 1}}
  ],
  "targetElements": ["..."],
  "successCriteria": ["..."],
  "parameters": {{"requiredCapabilities": ["mouse_interaction"]}}
}}"""
        return self.chat_completion(prompt, temperature=0.3)
