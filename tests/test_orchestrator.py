"""
Tests for the interaction orchestrator: command pipeline, state machine
and event queue.
"""

import asyncio
import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from conftest import (
    Harness, FakeVoice, FakeCamera, FakeLocator, FakeDistressSource, FakeBrain, wait_for,
)
from sightmate.core.error_handler import FatalServiceError, TransientServiceError
from sightmate.core.intents import Intent, IntentType
from sightmate.core.interfaces import Coordinates
from sightmate.core.navigation import ARRIVAL_MESSAGE
from sightmate.core.orchestrator import ButtonPress, WELCOME_MESSAGE
from sightmate.core.session import Mode, NavigationPlan, Severity


def record_modes(h: Harness):
    """Wrap set_mode so every requested transition is recorded."""
    modes = []
    original = h.orch.set_mode

    def set_mode(mode):
        modes.append(mode)
        original(mode)

    h.orch.set_mode = set_mode
    return modes


class TestButtonHandling:
    """Tests for debounce, listening and transcript checks."""

    def test_debounce_ignores_rapid_second_press(self):
        async def scenario():
            h = Harness(voice=FakeVoice(replies=["", ""]))
            await h.press()
            await h.press(advance=0.1)
            assert len(h.voice.calls) == 1
            await h.close()

        asyncio.run(scenario())

    def test_short_transcript_reprompts(self):
        async def scenario():
            h = Harness(voice=FakeVoice(replies=["a"]))
            await h.press()
            assert h.speech.spoken == ["I didn't hear you, please try again."]
            assert h.state.mode == Mode.IDLE
            assert h.brain.classify_calls == []
            assert h.feedback.vibrations == [50]
            assert h.feedback.sounds == ['start']
            await h.close()

        asyncio.run(scenario())

    def test_press_while_listening_stops_listening(self):
        async def scenario():
            h = Harness(voice=FakeVoice(hold=True))
            command = asyncio.ensure_future(h.press())
            assert await wait_for(lambda: h.state.mode == Mode.LISTENING)

            await h.press()
            assert h.voice.stop_calls == 1
            await asyncio.wait_for(command, 1.0)
            assert h.state.mode == Mode.IDLE
            await h.close()

        asyncio.run(scenario())

    def test_new_press_supersedes_slow_request(self):
        async def scenario():
            h = Harness(voice=FakeVoice(replies=["what is ahead of me", "go quiet please"]))
            h.brain.classify_delay = 0.2
            h.brain.intents["go quiet please"] = IntentType.COMPANION_MODE_OFF

            first = asyncio.ensure_future(h.press())
            assert await wait_for(lambda: h.state.mode == Mode.PROCESSING_INTENT)
            h.brain.classify_delay = 0.0
            await h.press()
            await asyncio.wait_for(first, 1.0)

            assert h.brain.analyze_calls == []
            assert "Quiet mode enabled." in h.speech.spoken
            assert h.state.mode == Mode.IDLE
            await h.close()

        asyncio.run(scenario())


class TestVisualRequests:
    """Tests for describe / read / where-am-i."""

    def test_describe_flow(self):
        async def scenario():
            h = Harness(voice=FakeVoice(replies=["what is in front of me"]))
            modes = record_modes(h)
            await h.press()

            assert modes == [
                Mode.LISTENING, Mode.PROCESSING_INTENT, Mode.CAPTURING,
                Mode.ANALYZING, Mode.SPEAKING, Mode.IDLE,
            ]
            assert h.camera.calls == [(False, False)]
            assert h.speech.spoken[-1] == h.brain.analysis
            assert "Checking..." in h.speech.spoken
            assert h.feedback.sounds == ['start', 'end']
            await h.close()

        asyncio.run(scenario())

    def test_describe_while_walking_returns_to_walking(self):
        async def scenario():
            h = Harness(voice=FakeVoice(replies=["read this sign"]))
            h.brain.intents["read this sign"] = IntentType.READ_TEXT
            h.state.walking_active = True
            h.orch.set_mode(Mode.WALKING)

            await h.press()
            assert h.state.mode == Mode.WALKING
            assert h.brain.analyze_calls[0][1].type == IntentType.READ_TEXT
            await h.close()

        asyncio.run(scenario())

    def test_camera_failure_enters_error_then_restores(self):
        async def scenario():
            h = Harness(voice=FakeVoice(replies=["describe the room"]), camera=FakeCamera(frames=[None]))
            await h.press()

            assert h.state.mode == Mode.ERROR
            assert 'error' in h.feedback.sounds
            assert await wait_for(lambda: h.state.mode == Mode.IDLE)
            assert "Camera error." in h.speech.spoken
            assert h.brain.analyze_calls == []
            await h.close()

        asyncio.run(scenario())

    def test_where_am_i_with_location(self):
        async def scenario():
            coords = Coordinates(51.5074, -0.1278)
            h = Harness(voice=FakeVoice(replies=["where am i"]), locator=FakeLocator(coords))
            h.brain.intents["where am i"] = IntentType.WHERE_AM_I
            await h.press()

            assert h.brain.analyze_calls[0][2] == coords
            assert h.orch.last_location == coords
            assert "Locating..." in h.speech.spoken
            assert "Checking..." not in h.speech.spoken
            await h.close()

        asyncio.run(scenario())

    def test_where_am_i_without_gps(self):
        async def scenario():
            h = Harness(voice=FakeVoice(replies=["where am i"]),
                        locator=FakeLocator(error=TimeoutError("no fix")))
            h.brain.intents["where am i"] = IntentType.WHERE_AM_I
            await h.press()

            assert "GPS signal lost. Checking visual cues." in h.speech.spoken
            assert h.brain.analyze_calls[0][2] is None
            assert h.state.mode == Mode.IDLE
            await h.close()

        asyncio.run(scenario())


class TestIntentClassification:
    """Tests for retry and the keyword fallback."""

    def test_transient_failure_is_retried(self):
        async def scenario():
            h = Harness(voice=FakeVoice(replies=["start walking mode"]))
            h.brain.intent_errors = [TransientServiceError("overloaded", status=503)]
            h.brain.intents["start walking mode"] = IntentType.WALKING_MODE_ON
            await h.press()

            assert len(h.brain.classify_calls) == 2
            assert h.state.walking_active
            assert h.state.mode == Mode.WALKING
            await h.close()

        asyncio.run(scenario())

    def test_fatal_failure_uses_keyword_parser(self):
        async def scenario():
            h = Harness(voice=FakeVoice(replies=["take me to the library"]))
            h.brain.intent_errors = [FatalServiceError("bad api key")]
            await h.press()

            assert len(h.brain.classify_calls) == 1
            assert h.brain.plan_calls[0][0] == "library"
            assert "I couldn't find that location." in h.speech.spoken
            await h.close()

        asyncio.run(scenario())

    def test_unmatched_fallback_describes(self):
        async def scenario():
            h = Harness(voice=FakeVoice(replies=["hmm interesting"]))
            h.brain.intent_errors = [FatalServiceError("bad api key")]
            await h.press()

            intent = h.brain.analyze_calls[0][1]
            assert intent.type == IntentType.DESCRIBE
            assert intent.confidence == 0.5
            await h.close()

        asyncio.run(scenario())


class TestModeToggles:
    """Tests for walking / companion / navigation commands."""

    def test_walking_mode_off(self):
        async def scenario():
            h = Harness(voice=FakeVoice(replies=["stop walking mode"]))
            h.brain.intents["stop walking mode"] = IntentType.WALKING_MODE_OFF
            h.state.walking_active = True
            h.state.companion_mode = True
            h.orch.set_mode(Mode.WALKING)
            assert h.orch.perception.running

            await h.press()
            assert h.state.mode == Mode.IDLE
            assert not h.state.walking_active
            assert not h.orch.perception.running
            assert h.speech.spoken[-1] == "Walking mode disabled."
            await h.close()

        asyncio.run(scenario())

    def test_hands_free_on_behaves_like_walking(self):
        async def scenario():
            h = Harness(voice=FakeVoice(replies=["hands free please"]))
            h.brain.intents["hands free please"] = IntentType.HANDS_FREE_ON
            await h.press()

            assert h.state.walking_active and h.state.companion_mode
            assert h.state.mode == Mode.WALKING
            assert h.orch.perception.running
            await h.close()

        asyncio.run(scenario())

    def test_companion_on_enables_walking(self):
        async def scenario():
            h = Harness(voice=FakeVoice(replies=["be my companion"]))
            h.brain.intents["be my companion"] = IntentType.COMPANION_MODE_ON
            await h.press()

            assert h.state.companion_mode
            assert h.state.walking_active
            assert h.state.mode == Mode.WALKING
            assert h.state.last_companion_message == h.clock()
            await h.close()

        asyncio.run(scenario())

    def test_navigate_success(self):
        async def scenario():
            coords = Coordinates(40.0, -73.0)
            brain = FakeBrain()
            brain.plan = NavigationPlan(destination="", steps=["Walk north one block."], total_time="2 minutes")
            brain.intents["take me to the park"] = Intent(
                type=IntentType.NAVIGATE, original_query="take me to the park", destination="the park")
            h = Harness(voice=FakeVoice(replies=["take me to the park"]), brain=brain,
                        locator=FakeLocator(coords))
            await h.press()

            assert brain.plan_calls == [("the park", coords)]
            assert "Calculating walking route to the park." in h.speech.spoken
            assert "Route found. 2 minutes. Starting navigation." in h.speech.spoken

            assert await wait_for(lambda: ARRIVAL_MESSAGE in h.speech.spoken)
            assert h.state.mode == Mode.WALKING
            assert not h.state.navigating
            await h.close()

        asyncio.run(scenario())

    def test_navigate_without_destination(self):
        async def scenario():
            h = Harness(voice=FakeVoice(replies=["navigate"]))
            h.brain.intents["navigate"] = IntentType.NAVIGATE
            await h.press()

            assert h.speech.spoken[-1] == "Where would you like to go?"
            assert h.brain.plan_calls == []
            assert h.state.mode == Mode.IDLE
            await h.close()

        asyncio.run(scenario())

    def test_navigate_route_error(self):
        async def scenario():
            h = Harness(voice=FakeVoice(replies=["go to mars"]))
            h.brain.intents["go to mars"] = Intent(type=IntentType.NAVIGATE, destination="mars")
            h.brain.plan = FatalServiceError("no route")
            await h.press()

            assert h.speech.spoken[-1] == "I couldn't find that location."
            assert not h.state.navigating
            assert h.state.mode == Mode.IDLE
            await h.close()

        asyncio.run(scenario())

    def test_stop_navigation(self):
        async def scenario():
            h = Harness(voice=FakeVoice(replies=["stop navigation"]))
            h.brain.intents["stop navigation"] = IntentType.STOP_NAVIGATION
            h.state.walking_active = True
            h.state.navigating = True
            h.orch.narrator.begin(NavigationPlan(destination="x", steps=["a", "b"]))
            h.state.mode = Mode.NAVIGATING

            await h.press()
            assert not h.state.navigating
            assert h.orch.narrator.plan is None
            assert h.state.mode == Mode.WALKING
            assert "Navigation stopped." in h.speech.spoken
            await h.close()

        asyncio.run(scenario())


class TestEventQueue:
    """Tests for run() and event dispatch."""

    def test_run_dispatches_events(self):
        async def scenario():
            source = FakeDistressSource()
            h = Harness(voice=FakeVoice(replies=["", ""]), distress_source=source)
            runner = asyncio.ensure_future(h.orch.run())

            assert await wait_for(lambda: source.callback is not None)
            assert h.orch.watchdog.running
            h.orch.press_button()
            assert await wait_for(lambda: len(h.voice.calls) == 1)
            assert await wait_for(lambda: h.state.mode == Mode.IDLE)

            source.callback('keyword_high', Severity.HIGH, 'help')
            assert await wait_for(lambda: h.orch.escalation.checks_started == 1)

            h.orch.shutdown()
            await asyncio.wait_for(runner, 1.0)
            assert source.stopped
            assert not h.orch.watchdog.running
            assert h.speech.spoken[0] == WELCOME_MESSAGE

        asyncio.run(scenario())

    def test_unknown_event_is_ignored(self):
        async def scenario():
            h = Harness()
            h.orch.dispatch("bogus")
            h.orch.dispatch(ButtonPress(timestamp=h.clock()))
            assert await wait_for(lambda: len(h.voice.calls) == 1)
            await h.close()

        asyncio.run(scenario())

    def test_shutdown_is_idempotent(self):
        async def scenario():
            h = Harness()
            h.orch.shutdown()
            h.orch.shutdown()
            assert h.orch.events.qsize() == 1

        asyncio.run(scenario())
