"""
SightMate - Perception Loop
Walking-mode hazard watch: capture, analyze, react, repeat.
"""

import asyncio
import logging
import random
from typing import Optional, Set, TYPE_CHECKING

from .session import Mode, Severity, WalkingHazard

if TYPE_CHECKING:
    from .orchestrator import InteractionOrchestrator

logger = logging.getLogger(__name__)

DEFAULT_COMPANION_PHRASES = [
    "I'm walking right here with you.",
    "You're doing great, stay confident.",
    "I'm watching out for you.",
    "Everything looks good, keep going.",
    "I'm here, just let me know if you need anything.",
    "Nice and steady.",
    "You are doing wonderful.",
    "The path ahead seems clear.",
]

PATH_CLEAR_MESSAGE = "Path clear."

# Modes in which a cycle is skipped outright
PAUSED_MODES = frozenset({
    Mode.LISTENING,
    Mode.PROCESSING_INTENT,
    Mode.EMERGENCY_CHECK,
    Mode.EMERGENCY_ACTING,
})


class PerceptionLoop:
    """
    One capture+analyze cycle at a time while walking or navigating.

    The loop is a single task; stop() cancels it directly. restart() frees the
    guard and starts a fresh loop, leaving a stalled cycle to finish its
    analysis before the old loop exits. Overlapping cycles are dropped, never
    queued.
    """

    def __init__(self, orchestrator: 'InteractionOrchestrator', rng: Optional[random.Random] = None):
        self.orchestrator = orchestrator
        self.state = orchestrator.state
        self.arbiter = orchestrator.arbiter
        self.brain = orchestrator.brain
        self.rng = rng or random.Random()

        config = orchestrator.config
        self.cadence = config.get('perception.cadence_seconds', 0.1)
        self.capture_retry_delay = config.get('perception.capture_retry_delay', 0.1)
        self.companion_interval = config.get('perception.companion_interval', 15)
        self.path_clear_probability = config.get('perception.path_clear_probability', 0.05)
        self.companion_phrases = config.get('perception.companion_phrases') or DEFAULT_COMPANION_PHRASES

        self._task: Optional[asyncio.Task] = None
        # Loops superseded by restart(), still finishing their last cycle
        self._detached: Set[asyncio.Task] = set()
        self._in_flight = False
        # Bumped on stop/restart so an older cycle cannot release a newer cycle's guard
        self._generation = 0

        # Stats
        self.cycles = 0
        self.dropped_cycles = 0
        self.hazards_announced = 0
        self.max_concurrent = 0
        self._concurrent = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def ensure_running(self):
        """Start the loop unless it is already going."""
        if not self.running:
            self._task = asyncio.ensure_future(self._run(self._generation))
            logger.info("Perception loop started")

    def stop(self):
        if self._task is not None and not self._task.done():
            self._task.cancel()
            logger.info("Perception loop stopped")
        for task in list(self._detached):
            task.cancel()
        self._detached.clear()
        self._task = None
        self._in_flight = False
        self._generation += 1

    def restart(self):
        """
        Free the guard and start a fresh loop.

        A cycle stuck in analysis is not cancelled: its result is still
        reacted to, and its loop exits once that cycle is done.
        """
        old = self._task
        self._task = None
        self._in_flight = False
        self._generation += 1
        if old is not None and not old.done():
            self._detached.add(old)
            old.add_done_callback(self._detached.discard)
        self.ensure_running()

    def _should_run(self) -> bool:
        return self.state.walking_active or self.state.navigating

    async def _run(self, generation: int):
        while self._should_run() and generation == self._generation:
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Perception failures degrade to a skipped cycle
                logger.error(f"Perception cycle failed: {e}")
            if generation != self._generation:
                break
            await asyncio.sleep(self.cadence)
        logger.debug("Perception loop exited")

    async def run_cycle(self):
        """Run one capture+analyze+react cycle, or skip it."""
        self.state.last_activity = self.orchestrator.clock()

        if self.state.mode in PAUSED_MODES:
            return
        if self._in_flight:
            self.dropped_cycles += 1
            return

        self._in_flight = True
        generation = self._generation
        self._concurrent += 1
        self.max_concurrent = max(self.max_concurrent, self._concurrent)
        try:
            frame = await self._capture()
            if not frame:
                logger.debug("No frame after retry, skipping cycle")
                return

            self.cycles += 1
            try:
                hazard = await self.brain.analyze_walking_safety(frame)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Hazard analysis failed, skipping cycle: {e}")
                return

            self.state.last_activity = self.orchestrator.clock()
            self._react(hazard)
        finally:
            self._concurrent -= 1
            if generation == self._generation:
                self._in_flight = False

    async def _capture(self) -> Optional[str]:
        frame = await self.arbiter.capture(low_res=True, silent=True, block=False)
        if not frame:
            await asyncio.sleep(self.capture_retry_delay)
            frame = await self.arbiter.capture(low_res=True, silent=True, block=False)
        return frame

    def _react(self, hazard: Optional[WalkingHazard]):
        # The world may have moved on while analysis was running
        if not self._should_run() or self.state.mode in PAUSED_MODES:
            return

        if hazard is not None and hazard.is_fall:
            logger.warning("Fall detected")
            self.orchestrator.trigger_emergency(Severity.HIGH, source='fall')
            return

        now = self.orchestrator.clock()

        if hazard is not None and hazard.is_actionable:
            self.hazards_announced += 1
            logger.warning(
                f"⚠️  Hazard: {hazard.category} {hazard.direction} {hazard.distance} "
                f"({hazard.severity})"
            )
            self.arbiter.say(hazard.message, priority=True)
            self.state.last_companion_message = now
            return

        if self.arbiter.is_speaking:
            return

        if self.state.companion_mode:
            if now - self.state.last_companion_message >= self.companion_interval:
                self.arbiter.say(self.rng.choice(self.companion_phrases))
                self.state.last_companion_message = now
        elif self.rng.random() < self.path_clear_probability:
            self.arbiter.say(PATH_CLEAR_MESSAGE)
