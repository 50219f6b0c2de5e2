"""
SightMate - Collaborator Interfaces
Capabilities the orchestrator consumes. Default implementations live in
sightmate.services; tests substitute fakes.
"""

from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Union, List

from .intents import Intent
from .session import NavigationPlan, WalkingHazard, Severity


@dataclass
class Coordinates:
    latitude: float
    longitude: float

    def __str__(self) -> str:
        return f"{self.latitude:.5f},{self.longitude:.5f}"


# (signal type, severity, detail)
DistressCallback = Callable[[str, Severity, str], None]


class SpeechOutput(Protocol):
    async def speak(self, text: str) -> None:
        """Return once the utterance has finished or was stopped."""

    def stop(self) -> None:
        """Silence the current utterance immediately."""


class VoiceInput(Protocol):
    async def listen(self, timeout: float) -> str:
        """Return the transcript, or an empty string on silence/timeout."""

    def stop_listening(self) -> None: ...


class DistressSource(Protocol):
    def start_distress_listener(self, callback: DistressCallback) -> None: ...

    def stop_distress_listener(self) -> None: ...


class Camera(Protocol):
    async def capture(self, low_res: bool, silent: bool) -> Optional[str]:
        """Return a base64 JPEG frame, or None when no frame is available."""


class VisionBrain(Protocol):
    async def classify_intent(self, transcript: str) -> Intent: ...

    async def analyze_image(self, frame: str, intent: Intent,
                            location: Optional[Coordinates] = None) -> str: ...

    async def analyze_walking_safety(self, frame: str) -> Optional[WalkingHazard]: ...

    async def get_walking_directions(self, destination: str,
                                     coords: Optional[Coordinates] = None) -> Optional[NavigationPlan]: ...


class Feedback(Protocol):
    def play_sound(self, kind: str) -> None: ...

    def vibrate(self, pattern: Union[int, List[int]]) -> None: ...


class Locator(Protocol):
    async def get_current_location(self, timeout: float) -> Coordinates:
        """Raise on failure or timeout."""
