"""
Shared fakes and fixtures for the SightMate test suite.
"""

import asyncio
import os
import random
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import pytest

from sightmate.utils import ConfigManager, _deep_merge
from sightmate.core.intents import Intent, IntentType
from sightmate.core.interfaces import Coordinates
from sightmate.core.orchestrator import InteractionOrchestrator


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FixedRandom(random.Random):
    """random() always returns the same value; choice() picks the first item."""

    def __init__(self, value: float = 0.99):
        super().__init__(0)
        self.value = value

    def random(self):
        return self.value

    def choice(self, seq):
        return seq[0]


class FakeSpeech:
    def __init__(self, duration: float = 0.0):
        self.duration = duration
        self.spoken = []
        self.stop_calls = 0

    async def speak(self, text):
        self.spoken.append(text)
        await asyncio.sleep(self.duration)

    def stop(self):
        self.stop_calls += 1


class FakeVoice:
    """
    Scripted microphone. Each listen() pops the next reply; an exception
    instance is raised instead of returned. With hold=True, listen() blocks
    until stop_listening() is called and then returns "".
    """

    def __init__(self, replies=None, hold: bool = False, delay: float = 0.0):
        self.replies = list(replies or [])
        self.hold = hold
        self.delay = delay
        self.calls = []
        self.stop_calls = 0
        self._released = None

    async def listen(self, timeout):
        self.calls.append(timeout)
        if self.hold:
            self._released = asyncio.Event()
            await self._released.wait()
            return ""
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.replies:
            reply = self.replies.pop(0)
            if isinstance(reply, BaseException):
                raise reply
            return reply
        return ""

    def stop_listening(self):
        self.stop_calls += 1
        if self._released is not None:
            self._released.set()


class FakeCamera:
    def __init__(self, frames=None, delay: float = 0.0):
        # None in the list means "no frame this time"; the last entry repeats
        self.frames = list(frames) if frames is not None else ["frame"]
        self.delay = delay
        self.calls = []

    async def capture(self, low_res, silent):
        self.calls.append((low_res, silent))
        if self.delay:
            await asyncio.sleep(self.delay)
        if len(self.frames) > 1:
            return self.frames.pop(0)
        return self.frames[0]


class FakeBrain:
    def __init__(self):
        self.intents = {}
        self.intent_errors = []
        self.classify_delay = 0.0
        self.classify_calls = []

        self.hazards = []
        self.hazard_delay = 0.0
        self.hazard_calls = 0
        self.hang_hazard = False

        self.plan = None
        self.plan_calls = []

        self.analysis = "A quiet street with a bench on the left."
        self.analyze_calls = []

    async def classify_intent(self, transcript):
        self.classify_calls.append(transcript)
        if self.classify_delay:
            await asyncio.sleep(self.classify_delay)
        if self.intent_errors:
            raise self.intent_errors.pop(0)
        intent = self.intents.get(transcript)
        if isinstance(intent, IntentType):
            return Intent(type=intent, original_query=transcript)
        if intent is None:
            return Intent(type=IntentType.DESCRIBE, original_query=transcript)
        return intent

    async def analyze_image(self, frame, intent, location=None):
        self.analyze_calls.append((frame, intent, location))
        return self.analysis

    async def analyze_walking_safety(self, frame):
        self.hazard_calls += 1
        if self.hang_hazard:
            await asyncio.Event().wait()
        if self.hazard_delay:
            await asyncio.sleep(self.hazard_delay)
        if self.hazards:
            hazard = self.hazards.pop(0)
            if isinstance(hazard, BaseException):
                raise hazard
            return hazard
        return None

    async def get_walking_directions(self, destination, coords=None):
        self.plan_calls.append((destination, coords))
        if isinstance(self.plan, BaseException):
            raise self.plan
        return self.plan


class FakeFeedback:
    def __init__(self):
        self.sounds = []
        self.vibrations = []

    def play_sound(self, kind):
        self.sounds.append(kind)

    def vibrate(self, pattern):
        self.vibrations.append(pattern)


class FakeLocator:
    def __init__(self, coords=None, error=None):
        self.coords = coords or Coordinates(40.7128, -74.006)
        self.error = error
        self.calls = 0

    async def get_current_location(self, timeout):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.coords


class FakeDistressSource:
    def __init__(self):
        self.callback = None
        self.stopped = False

    def start_distress_listener(self, callback):
        self.callback = callback

    def stop_distress_listener(self):
        self.stopped = True


FAST_CONFIG = {
    'interaction': {
        'debounce_seconds': 0.3,
        'error_restore_delay': 0.05,
        'capture_settle_delay': 0.0,
    },
    'perception': {
        'cadence_seconds': 0.01,
        'capture_retry_delay': 0.0,
        'companion_interval': 15,
    },
    'navigation': {'step_duration': 0.01, 'busy_backoff': 0.01},
    'watchdog': {'interval': 0.05, 'stale_threshold': 2},
    'retry': {'attempts': 3, 'base_delay': 0.0},
}


async def wait_for(predicate, timeout: float = 2.0, interval: float = 0.005) -> bool:
    """Poll until predicate() is true or the timeout passes."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


class Harness:
    """Orchestrator plus the fakes behind it."""

    def __init__(self, speech=None, voice=None, camera=None, brain=None, locator=None,
                 config=None, rng=None, distress_source=None):
        self.clock = FakeClock()
        self.speech = speech or FakeSpeech()
        self.voice = voice or FakeVoice()
        self.camera = camera or FakeCamera()
        self.brain = brain or FakeBrain()
        self.feedback = FakeFeedback()
        self.locator = locator
        self.distress_source = distress_source
        self.config = ConfigManager.from_dict(_deep_merge(FAST_CONFIG, config or {}))
        self.orch = InteractionOrchestrator(
            self.config,
            speech=self.speech,
            voice=self.voice,
            camera=self.camera,
            brain=self.brain,
            feedback=self.feedback,
            locator=self.locator,
            distress_source=self.distress_source,
            clock=self.clock,
            rng=rng or FixedRandom(),
        )

    @property
    def state(self):
        return self.orch.state

    async def press(self, advance: float = 1.0):
        """Button press, spaced past the debounce window."""
        self.clock.advance(advance)
        await self.orch.handle_command()

    async def close(self):
        self.orch.shutdown()
        await asyncio.sleep(0.01)


@pytest.fixture
def harness_factory():
    """Build a Harness inside the running event loop."""
    return Harness
