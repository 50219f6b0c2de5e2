"""
SightMate - Interaction Orchestrator
Mode/state machine, command pipeline and the event queue the background
monitors feed.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Set

from ..utils import ConfigManager
from .attention import AttentionArbiter
from .cancellation import CancellationRegistry, Interaction, InteractionCancelled
from .distress import DistressEvent, DistressMonitor
from .emergency import EmergencyEscalation
from .error_handler import ErrorHandler
from .intents import Intent, IntentType, parse_intent_fallback
from .interfaces import (
    SpeechOutput, VoiceInput, Camera, VisionBrain, Feedback, Locator,
    DistressSource, Coordinates,
)
from .navigation import NavigationNarrator
from .perception import PerceptionLoop
from .session import (
    Mode, Severity, SessionState, ACTIVE_WALKING_MODES, EMERGENCY_MODES,
)
from .watchdog import Watchdog

logger = logging.getLogger(__name__)

WELCOME_MESSAGE = "SightMate ready. Press to speak."


@dataclass
class ButtonPress:
    """The single physical control was pressed."""
    timestamp: float = field(default_factory=time.monotonic)


class InteractionOrchestrator:
    """
    Owns the session state and is its only writer.

    Loops (perception, navigation, watchdog, emergency verification) read
    state and request transitions through set_mode() and the helpers below.
    Button presses and distress signals arrive as events on one queue.
    """

    def __init__(self, config: ConfigManager, speech: SpeechOutput, voice: VoiceInput,
                 camera: Camera, brain: VisionBrain, feedback: Feedback,
                 locator: Optional[Locator] = None,
                 distress_source: Optional[DistressSource] = None,
                 clock: Callable[[], float] = time.monotonic,
                 rng: Optional[random.Random] = None):
        self.config = config
        self.clock = clock
        self.voice = voice
        self.brain = brain
        self.feedback = feedback
        self.locator = locator

        self.state = SessionState()
        self.state.last_activity = clock()
        self.state.last_companion_message = clock()
        self.last_location: Optional[Coordinates] = None

        self.registry = CancellationRegistry()
        self.arbiter = AttentionArbiter(speech, camera)
        self.error_handler = ErrorHandler(
            attempts=config.get('retry.attempts', 3),
            base_delay=config.get('retry.base_delay', 1.0),
        )

        self.debounce = config.get('interaction.debounce_seconds', 0.3)
        self.min_transcript_length = config.get('interaction.min_transcript_length', 2)
        self.listen_timeout = config.get('interaction.listen_timeout', 45)
        self.error_restore_delay = config.get('interaction.error_restore_delay', 3.0)
        self.capture_settle_delay = config.get('interaction.capture_settle_delay', 0.4)
        self.navigation_geo_timeout = config.get('navigation.geolocation_timeout', 4)
        self.where_am_i_timeout = config.get('location.where_am_i_timeout', 6)
        self.welcome_message = config.get('app.welcome_message', WELCOME_MESSAGE)

        self.perception = PerceptionLoop(self, rng=rng)
        self.narrator = NavigationNarrator(self)
        self.escalation = EmergencyEscalation(self)
        self.watchdog = Watchdog(self)
        self.distress_monitor = DistressMonitor(self, distress_source)

        self.events: asyncio.Queue = asyncio.Queue()
        self._tasks: Set[asyncio.Task] = set()
        self._last_press: Optional[float] = None
        self._running = False
        self._closed = False

    # ------------------------------------------------------------------
    # State machine

    @property
    def mode(self) -> Mode:
        return self.state.mode

    def set_mode(self, mode: Mode):
        """Single entry point for mode changes and their loop side effects."""
        previous = self.state.mode
        if previous != mode:
            self.state.mode = mode
            logger.info(f"Mode: {previous.value} -> {mode.value}")

        if mode != Mode.NAVIGATING:
            self.narrator.cancel_timer()

        if mode in ACTIVE_WALKING_MODES and (self.state.walking_active or self.state.navigating):
            self.perception.ensure_running()
        if mode == Mode.NAVIGATING:
            self.narrator.start()

    def restore_state(self):
        """Return to the mode the feature toggles imply."""
        self.set_mode(self.state.background_mode())

    def finish_navigation(self):
        """Called by the narrator after the last step."""
        self.narrator.clear()
        self.state.navigating = False
        if self.state.mode == Mode.NAVIGATING:
            self.set_mode(Mode.WALKING if self.state.walking_active else Mode.IDLE)

    def stop_navigation(self):
        self.narrator.clear()
        self.state.navigating = False

    def handle_error(self, message: str):
        """Speak a failure, sit in Error briefly, then restore."""
        logger.error(f"✗ {message}")
        self.set_mode(Mode.ERROR)
        self.feedback.play_sound('error')
        self.arbiter.say(message)
        current = self.registry.current
        self._spawn(self._restore_after_error(current.id if current else 0))

    async def _restore_after_error(self, interaction_id: int):
        await asyncio.sleep(self.error_restore_delay)
        # A newer interaction may already own the mode
        current = self.registry.current
        if self.state.mode == Mode.ERROR and (current.id if current else 0) == interaction_id:
            self.restore_state()

    # ------------------------------------------------------------------
    # Emergency hooks

    def trigger_emergency(self, severity: Severity, source: str = "unknown") -> bool:
        return self.escalation.trigger(severity, source)

    def resolve_emergency(self):
        """User confirmed they are safe."""
        logger.info("✓ Emergency resolved: user safe")
        self.state.emergency = None
        self.restore_state()

    def _reset_emergency(self, message: str):
        self.registry.begin_interaction()
        self.escalation.cancel()
        self.voice.stop_listening()
        self.state.emergency = None
        logger.info(message)
        self.arbiter.say(message)
        self.restore_state()

    def on_distress(self, event: DistressEvent):
        if self.state.mode in EMERGENCY_MODES:
            logger.debug(f"Distress ignored, emergency already active: {event.type}")
            return
        if self.state.mode == Mode.LISTENING:
            logger.debug(f"Distress ignored while user is speaking: {event.type}")
            return
        self.trigger_emergency(event.severity, event.type)

    # ------------------------------------------------------------------
    # Event queue

    def submit(self, event):
        self.events.put_nowait(event)

    def press_button(self):
        self.submit(ButtonPress(timestamp=self.clock()))

    def dispatch(self, event):
        if isinstance(event, ButtonPress):
            self._spawn(self.handle_command())
        elif isinstance(event, DistressEvent):
            self.on_distress(event)
        else:
            logger.warning(f"Unknown event: {event!r}")

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background task failed: {task.exception()!r}")

    def start(self):
        """Greet the user and start the background monitors."""
        self.arbiter.say(self.welcome_message)
        self.distress_monitor.start()
        self.watchdog.start()

    async def run(self):
        """Start up, then drain the event queue until shutdown()."""
        self._running = True
        self.start()
        try:
            while self._running:
                event = await self.events.get()
                if event is None:
                    break
                self.dispatch(event)
        finally:
            self.shutdown()

    def shutdown(self):
        if self._closed:
            return
        self._closed = True
        self._running = False
        logger.info("Shutting down")
        current = self.registry.current
        if current is not None:
            current.token.cancel()
        self.escalation.cancel()
        self.narrator.cancel_timer()
        self.perception.stop()
        self.watchdog.stop()
        self.distress_monitor.stop()
        self.arbiter.stop_speaking()
        self.voice.stop_listening()
        for task in list(self._tasks):
            task.cancel()
        self.events.put_nowait(None)

    # ------------------------------------------------------------------
    # Command pipeline

    async def handle_command(self):
        """Button press: start a voice command, or cancel/stop what is in progress."""
        now = self.clock()
        if self._last_press is not None and now - self._last_press < self.debounce:
            logger.debug("Button press debounced")
            return
        self._last_press = now

        if self.state.mode == Mode.EMERGENCY_CHECK:
            self._reset_emergency("Emergency check cancelled.")
            return
        if self.state.mode == Mode.EMERGENCY_ACTING:
            self._reset_emergency("Emergency mode reset.")
            return
        if self.state.mode == Mode.LISTENING:
            self.voice.stop_listening()
            return

        interaction = self.registry.begin_interaction()
        self.arbiter.stop_speaking()
        self.narrator.cancel_timer()
        self.set_mode(Mode.LISTENING)
        self.feedback.vibrate(50)
        self.feedback.play_sound('start')

        try:
            transcript = await interaction.run(self.voice.listen(self.listen_timeout))
            transcript = (transcript or '').strip()
            if len(transcript) < self.min_transcript_length:
                await self.arbiter.speak("I didn't hear you, please try again.", priority=True)
                interaction.checkpoint()
                self.restore_state()
                return

            logger.info(f"Heard: {transcript}")
            await self._process_command(transcript, interaction)
        except InteractionCancelled:
            logger.debug(f"Interaction {interaction.id} abandoned")
        except Exception as e:
            if interaction.is_current:
                logger.error(f"Voice command failed: {e}")
                self.restore_state()

    async def _process_command(self, transcript: str, interaction: Interaction):
        self.set_mode(Mode.PROCESSING_INTENT)
        self.feedback.play_sound('end')

        try:
            intent = await self._classify(transcript, interaction)
            logger.info(f"Intent: {intent.type.value}"
                        + (f" -> {intent.destination}" if intent.destination else ""))
            await self._dispatch_intent(intent, interaction)
        except InteractionCancelled:
            raise
        except Exception as e:
            if not interaction.is_current:
                return
            logger.error(f"Request failed: {e}")
            self.handle_error("Error processing request.")

    async def _classify(self, transcript: str, interaction: Interaction) -> Intent:
        try:
            return await interaction.run(
                self.error_handler.retry_async(self.brain.classify_intent, transcript)
            )
        except InteractionCancelled:
            raise
        except Exception as e:
            logger.warning(f"Intent model unavailable ({e}), using keyword parser")
            intent = parse_intent_fallback(transcript)
            if intent is None:
                intent = Intent(type=IntentType.DESCRIBE, original_query=transcript, confidence=0.5)
            return intent

    async def _locate(self, interaction: Interaction, timeout: float) -> Optional[Coordinates]:
        if self.locator is None:
            return None
        try:
            coords = await interaction.run(
                asyncio.wait_for(self.locator.get_current_location(timeout), timeout)
            )
        except InteractionCancelled:
            raise
        except Exception as e:
            logger.warning(f"Location unavailable: {e}")
            return None
        self.last_location = coords
        return coords

    async def _dispatch_intent(self, intent: Intent, interaction: Interaction):
        kind = intent.type

        if kind == IntentType.COMPANION_MODE_ON:
            self.state.companion_mode = True
            await self.arbiter.speak("I'm here with you now. Let's go together.")
            interaction.checkpoint()
            self.state.last_companion_message = self.clock()
            self.state.walking_active = True
            self.restore_state()
            return

        if kind == IntentType.COMPANION_MODE_OFF:
            self.state.companion_mode = False
            await self.arbiter.speak("Quiet mode enabled.")
            interaction.checkpoint()
            self.restore_state()
            return

        if kind == IntentType.NAVIGATE:
            await self._navigate(intent, interaction)
            return

        if kind == IntentType.STOP_NAVIGATION:
            self.stop_navigation()
            await self.arbiter.speak("Navigation stopped.")
            interaction.checkpoint()
            self.restore_state()
            return

        if kind in (IntentType.WALKING_MODE_ON, IntentType.HANDS_FREE_ON):
            self.state.walking_active = True
            self.state.companion_mode = True
            self.state.last_companion_message = self.clock()
            await self.arbiter.speak("Walking mode active. I'm with you.")
            interaction.checkpoint()
            self.restore_state()
            return

        if kind in (IntentType.WALKING_MODE_OFF, IntentType.HANDS_FREE_OFF):
            self.state.walking_active = False
            self.state.companion_mode = False
            self.stop_navigation()
            self.perception.stop()
            await self.arbiter.speak("Walking mode disabled.")
            interaction.checkpoint()
            self.restore_state()
            return

        await self._answer_visual(intent, interaction)

    async def _navigate(self, intent: Intent, interaction: Interaction):
        destination = (intent.destination or '').strip()
        if not destination:
            await self.arbiter.speak("Where would you like to go?")
            interaction.checkpoint()
            self.restore_state()
            return

        self.arbiter.say(f"Calculating walking route to {destination}.")
        coords = await self._locate(interaction, self.navigation_geo_timeout)
        try:
            plan = await interaction.run(
                self.error_handler.retry_async(self.brain.get_walking_directions, destination, coords)
            )
        except InteractionCancelled:
            raise
        except Exception as e:
            logger.warning(f"Route planning failed: {e}")
            plan = None

        if plan is None or not plan.steps:
            await self.arbiter.speak("I couldn't find that location.")
            interaction.checkpoint()
            self.restore_state()
            return

        if not plan.destination:
            plan.destination = destination
        self.narrator.begin(plan)
        self.state.navigating = True
        self.state.walking_active = True
        self.state.companion_mode = True
        self.state.last_companion_message = self.clock()
        self.set_mode(Mode.NAVIGATING)

        summary = f"Route found. {plan.total_time}." if plan.total_time else "Route found."
        await self.arbiter.speak(f"{summary} Starting navigation.")

    async def _answer_visual(self, intent: Intent, interaction: Interaction):
        location = None
        if intent.type == IntentType.WHERE_AM_I:
            self.arbiter.say("Locating...")
            location = await self._locate(interaction, self.where_am_i_timeout)
            if location is None:
                self.arbiter.say("GPS signal lost. Checking visual cues.")

        interaction.checkpoint()
        self.set_mode(Mode.CAPTURING)
        if intent.type != IntentType.WHERE_AM_I:
            self.arbiter.say("Checking...")

        await interaction.run(asyncio.sleep(self.capture_settle_delay))
        frame = await interaction.run(self.arbiter.capture(low_res=False, silent=False))
        if not frame:
            self.handle_error("Camera error.")
            return

        self.set_mode(Mode.ANALYZING)
        analysis = await interaction.run(self.brain.analyze_image(frame, intent, location))

        self.set_mode(Mode.SPEAKING)
        await self.arbiter.speak(analysis)
        interaction.checkpoint()
        self.restore_state()
