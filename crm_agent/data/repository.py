from pathlib import Path
from typing import Dict, Any, List, Optional
import json
import logging
import os

from .patterns import AutomationPattern, utc_now, format_timestamp
from ..core.errors import PatternStoreError

logger = logging.getLogger(__name__)

FORMAT_VERSION = '1.0'


class PatternRepository:
    """Single JSON document holding every automation pattern.

    The document layout is ``{lastUpdated, version, patterns: [...]}``.
    Top-level keys and pattern records this version does not understand
    are carried through to the next save untouched.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._document_extra: Dict[str, Any] = {}
        self._unparsed: List[Dict[str, Any]] = []

    def load(self) -> Dict[str, AutomationPattern]:
        """Read all patterns; a missing or unreadable file yields an empty index"""
        if not self.path.exists():
            logger.info("No pattern file at %s, starting fresh", self.path)
            return {}

        try:
            with open(self.path, encoding='utf-8') as f:
                document = json.load(f)
            records = document.get('patterns', [])
            if not isinstance(records, list):
                raise ValueError("'patterns' is not a list")
        except (OSError, ValueError, AttributeError) as e:
            logger.error("Failed to load patterns from %s: %s", self.path, e)
            self._quarantine()
            return {}

        self._document_extra = {
            k: v for k, v in document.items()
            if k not in ('lastUpdated', 'version', 'patterns')
        }
        self._unparsed = []
        patterns = {}
        for record in records:
            try:
                pattern = AutomationPattern.from_dict(record)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping unreadable pattern record: %s", e)
                self._unparsed.append(record)
                continue
            patterns[pattern.id] = pattern

        logger.info("Loaded %d patterns from %s", len(patterns), self.path)
        return patterns

    def save(self, patterns: Dict[str, AutomationPattern]) -> None:
        """Rewrite the whole document; raises PatternStoreError on failure"""
        document = dict(self._document_extra)
        document.update({
            'lastUpdated': format_timestamp(utc_now()),
            'version': FORMAT_VERSION,
            'patterns': [p.to_dict() for p in patterns.values()] + list(self._unparsed),
        })
        tmp_path = self.path.with_name(self.path.name + '.tmp')
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(document, f, indent=2)
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to save patterns to %s: %s", self.path, e)
            raise PatternStoreError(f"Failed to save patterns: {e}") from e

    def _quarantine(self) -> Optional[Path]:
        """Move an unreadable file aside so the next save does not destroy it"""
        backup = self.path.with_name(self.path.name + '.corrupt')
        try:
            os.replace(self.path, backup)
        except OSError as e:
            logger.warning("Could not move corrupt pattern file aside: %s", e)
            return None
        logger.warning("Moved corrupt pattern file to %s", backup)
        return backup


def write_export(path: str, patterns: List[AutomationPattern]) -> None:
    data = {
        'exportDate': format_timestamp(utc_now()),
        'version': FORMAT_VERSION,
        'patterns': [p.to_dict() for p in patterns],
    }
    try:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)
    except OSError as e:
        raise PatternStoreError(f"Failed to export patterns: {e}") from e


def read_export(path: str) -> List[AutomationPattern]:
    try:
        with open(path, encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise PatternStoreError(f"Failed to read patterns file: {e}") from e

    records = data.get('patterns') if isinstance(data, dict) else None
    if not isinstance(records, list):
        raise PatternStoreError('Invalid patterns file format')
    try:
        return [AutomationPattern.from_dict(r) for r in records]
    except (KeyError, TypeError, ValueError) as e:
        raise PatternStoreError(f"Invalid pattern record: {e}") from e
