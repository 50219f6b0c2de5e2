"""
SightMate - Session State
Modes, toggles and the small records shared between the orchestrator's loops.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Dict, Any


class Mode(Enum):
    """Top-level activity of the orchestrator."""
    IDLE = "idle"
    LISTENING = "listening"
    PROCESSING_INTENT = "processing_intent"
    CAPTURING = "capturing"
    ANALYZING = "analyzing"
    SPEAKING = "speaking"
    WALKING = "walking"
    NAVIGATING = "navigating"
    EMERGENCY_CHECK = "emergency_check"
    EMERGENCY_ACTING = "emergency_acting"
    ERROR = "error"


# Modes in which the perception loop does real work
ACTIVE_WALKING_MODES = frozenset({Mode.WALKING, Mode.NAVIGATING})

EMERGENCY_MODES = frozenset({Mode.EMERGENCY_CHECK, Mode.EMERGENCY_ACTING})


class Severity(Enum):
    """Distress severity, drives verification strictness."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class NavigationPlan:
    """A resolved walking route."""
    destination: str
    steps: List[str]
    total_distance: str = ""
    total_time: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional['NavigationPlan']:
        """Build a plan from a model response; None when there is nothing to walk."""
        if not isinstance(data, dict):
            return None
        steps = [str(s).strip() for s in data.get('steps') or [] if str(s).strip()]
        if not steps:
            return None
        return cls(
            destination=str(data.get('destination') or ''),
            steps=steps,
            total_distance=str(data.get('totalDistance') or data.get('total_distance') or ''),
            total_time=str(data.get('totalTime') or data.get('total_time') or ''),
        )


@dataclass
class WalkingHazard:
    """Single highest-risk hazard seen in one perception frame."""
    category: str = "none"
    severity: str = "low"
    direction: str = "unknown"
    distance: str = "unknown"
    confidence: float = 0.0
    message: str = ""
    hazard_type: str = "none"
    description: str = ""

    @property
    def is_fall(self) -> bool:
        return self.category == "fall"

    @property
    def is_actionable(self) -> bool:
        """A real hazard with something to say."""
        return self.category != "none" and bool(self.message.strip())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WalkingHazard':
        try:
            confidence = float(data.get('confidence', 0.0) or 0.0)
        except (TypeError, ValueError):
            confidence = 0.0
        category = str(data.get('category') or 'none').lower()
        return cls(
            category=category,
            severity=str(data.get('severity') or 'low').lower(),
            direction=str(data.get('direction') or 'unknown').lower(),
            distance=str(data.get('distance') or 'unknown').lower(),
            confidence=confidence,
            message=str(data.get('message') or ''),
            hazard_type=str(data.get('hazard_type') or category),
            description=str(data.get('description') or ''),
        )


@dataclass
class EmergencySession:
    """One distress verification, from trigger to resolution."""
    severity: Severity
    source: str = "unknown"
    attempt: int = 0
    started_at: float = field(default_factory=time.monotonic)


@dataclass
class SessionState:
    """
    The orchestrator's single owned state record.

    Only the orchestrator writes `mode` and the feature toggles; loops read
    them and request transitions through the orchestrator.
    """
    mode: Mode = Mode.IDLE
    walking_active: bool = False
    navigating: bool = False
    companion_mode: bool = False

    # Perception loop heartbeat, read by the watchdog
    last_activity: float = field(default_factory=time.monotonic)
    # Gates companion filler cadence
    last_companion_message: float = field(default_factory=time.monotonic)

    emergency: Optional[EmergencySession] = None

    def background_mode(self) -> Mode:
        """Mode implied by the toggles alone."""
        if self.navigating:
            return Mode.NAVIGATING
        if self.walking_active:
            return Mode.WALKING
        return Mode.IDLE

    def snapshot(self) -> Dict[str, Any]:
        return {
            'mode': self.mode.value,
            'walking_active': self.walking_active,
            'navigating': self.navigating,
            'companion_mode': self.companion_mode,
            'emergency': self.emergency.severity.value if self.emergency else None,
        }
