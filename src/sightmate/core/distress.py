"""
SightMate - Distress Monitor
Turns ambient speech and loud sounds into typed distress events.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, TYPE_CHECKING

from .session import Severity
from .interfaces import DistressSource

if TYPE_CHECKING:
    from .orchestrator import InteractionOrchestrator

logger = logging.getLogger(__name__)

DEFAULT_HIGH_KEYWORDS = ["help", "emergency", "call 911", "scream", "no no no"]
DEFAULT_MEDIUM_KEYWORDS = ["ouch", "hurt", "pain", "fell", "falling", "stop it"]


@dataclass
class DistressEvent:
    """Ambient signal worth checking on the user for."""
    type: str
    severity: Severity
    detail: str = ""
    timestamp: float = field(default_factory=time.monotonic)


def classify_phrase(text: str,
                    high_keywords: Iterable[str] = DEFAULT_HIGH_KEYWORDS,
                    medium_keywords: Iterable[str] = DEFAULT_MEDIUM_KEYWORDS) -> Optional[Severity]:
    """
    Severity of an overheard phrase, or None if it is not distress.

    High-severity phrases win over medium ones.
    """
    phrase = (text or '').lower().strip()
    if not phrase:
        return None
    if any(keyword in phrase for keyword in high_keywords):
        return Severity.HIGH
    if any(keyword in phrase for keyword in medium_keywords):
        return Severity.MEDIUM
    return None


class LoudNoiseDetector:
    """Amplitude threshold with a quiet period after each trigger."""

    def __init__(self, threshold: float = 0.85, debounce: float = 5.0,
                 clock: Callable[[], float] = time.monotonic):
        self.threshold = threshold
        self.debounce = debounce
        self.clock = clock
        self._last_trigger: Optional[float] = None

    def feed(self, amplitude: float) -> bool:
        """Return True when this amplitude sample should raise an event."""
        if amplitude <= self.threshold:
            return False
        now = self.clock()
        if self._last_trigger is not None and now - self._last_trigger < self.debounce:
            return False
        self._last_trigger = now
        return True


class DistressMonitor:
    """Bridges the ambient listener to the orchestrator's event queue."""

    def __init__(self, orchestrator: 'InteractionOrchestrator', source: Optional[DistressSource]):
        self.orchestrator = orchestrator
        self.source = source
        self.active = False
        self.events_seen = 0

    def start(self):
        if self.source is None or self.active:
            return
        try:
            self.source.start_distress_listener(self.on_signal)
            self.active = True
            logger.info("✓ Distress monitor listening")
        except Exception as e:
            logger.error(f"✗ Distress monitor failed to start: {e}")

    def stop(self):
        if self.source is None or not self.active:
            return
        try:
            self.source.stop_distress_listener()
        except Exception as e:
            logger.warning(f"Error stopping distress monitor: {e}")
        self.active = False

    def on_signal(self, signal_type: str, severity: Severity, detail: str = ""):
        """Listener callback; must be invoked on the event loop thread."""
        self.events_seen += 1
        logger.info(f"Distress signal: {signal_type} ({severity.value}) {detail}".rstrip())
        self.orchestrator.submit(DistressEvent(type=signal_type, severity=severity, detail=detail))
