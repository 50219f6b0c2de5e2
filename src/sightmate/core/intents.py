"""
SightMate - Voice Intents
Intent kinds the command pipeline dispatches on, plus a keyword parser used
when the intent model is unreachable or rate limited.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Dict, Any


class IntentType(Enum):
    DESCRIBE = "DESCRIBE"
    READ_TEXT = "READ_TEXT"
    SAFETY_CHECK = "SAFETY_CHECK"
    HANDS_FREE_ON = "HANDS_FREE_ON"
    HANDS_FREE_OFF = "HANDS_FREE_OFF"
    WALKING_MODE_ON = "WALKING_MODE_ON"
    WALKING_MODE_OFF = "WALKING_MODE_OFF"
    NAVIGATE = "NAVIGATE"
    STOP_NAVIGATION = "STOP_NAVIGATION"
    WHERE_AM_I = "WHERE_AM_I"
    COMPANION_MODE_ON = "COMPANION_MODE_ON"
    COMPANION_MODE_OFF = "COMPANION_MODE_OFF"
    UNKNOWN = "UNKNOWN"


# Intents answered by looking through the camera
VISUAL_INTENTS = frozenset({
    IntentType.DESCRIBE,
    IntentType.READ_TEXT,
    IntentType.SAFETY_CHECK,
    IntentType.WHERE_AM_I,
    IntentType.UNKNOWN,
})


@dataclass
class Intent:
    """Classified voice command."""
    type: IntentType
    original_query: str = ""
    confidence: float = 1.0
    destination: Optional[str] = None
    detail_level: str = "simple"

    @property
    def is_visual(self) -> bool:
        return self.type in VISUAL_INTENTS

    @classmethod
    def from_dict(cls, data: Dict[str, Any], transcript: str) -> 'Intent':
        """Build an intent from a model's JSON answer; unknown labels become UNKNOWN."""
        raw = str(data.get('intent') or data.get('type') or '').strip().upper()
        try:
            intent_type = IntentType(raw)
        except ValueError:
            intent_type = IntentType.UNKNOWN
        destination = data.get('destination') or None
        detail = data.get('detailLevel') or data.get('detail_level') or 'simple'
        return cls(
            type=intent_type,
            original_query=transcript,
            confidence=1.0,
            destination=str(destination).strip() if destination else None,
            detail_level=detail if detail in ('simple', 'detailed') else 'simple',
        )


_DESTINATION_PATTERN = re.compile(
    r'(?:navigate to|go to|take me to|directions to|walk to|navigate)\s+(?:the\s+)?(.+)',
    re.IGNORECASE,
)


def extract_destination(text: str) -> Optional[str]:
    """Pull the place name out of "take me to ..." style phrases."""
    match = _DESTINATION_PATTERN.search(text)
    if not match:
        return None
    destination = match.group(1).strip(" .?!,")
    return destination or None


def parse_intent_fallback(text: str) -> Optional[Intent]:
    """
    Rule-based classifier for offline / rate-limited operation.

    Args:
        text: Raw transcript

    Returns:
        Intent, or None when no rule matches
    """
    t = text.lower()

    def make(intent_type: IntentType, confidence: float = 0.9, **kwargs) -> Intent:
        return Intent(type=intent_type, original_query=text, confidence=confidence, **kwargs)

    if 'safe' in t or 'danger' in t or 'watch out' in t:
        return make(IntentType.SAFETY_CHECK)

    if any(word in t for word in ('stop', 'cancel', 'quit', 'exit')):
        if 'navigation' in t or 'route' in t:
            return make(IntentType.STOP_NAVIGATION, 1.0)
        if 'companion' in t:
            return make(IntentType.COMPANION_MODE_OFF)
        if 'walking' in t or 'mode' in t:
            return make(IntentType.WALKING_MODE_OFF, 1.0)
        # Generic stop
        return make(IntentType.STOP_NAVIGATION, 0.8)

    if ('start' in t or 'begin' in t) and ('walking' in t or 'mode' in t) and 'companion' not in t:
        return make(IntentType.WALKING_MODE_ON)

    if 'navigate' in t or 'go to' in t or 'take me' in t:
        return make(IntentType.NAVIGATE, destination=extract_destination(text))

    if 'where am i' in t or 'location' in t or 'address' in t:
        return make(IntentType.WHERE_AM_I)

    if ('read' in t or 'what does this say' in t or 'what does it say' in t
            or 'text' in t or 'document' in t):
        return make(IntentType.READ_TEXT)

    if 'companion' in t or ('friend' in t and 'be my' in t):
        if 'off' in t:
            return make(IntentType.COMPANION_MODE_OFF)
        return make(IntentType.COMPANION_MODE_ON)

    return None
