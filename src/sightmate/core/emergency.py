"""
SightMate - Emergency Escalation
Asks the user whether they are okay after a distress signal and calls for
help when they confirm danger or stay silent.
"""

import asyncio
import logging
import re
from enum import Enum
from typing import Iterable, List, Optional, TYPE_CHECKING

from .cancellation import Interaction, InteractionCancelled
from .session import Mode, Severity, EmergencySession, EMERGENCY_MODES

if TYPE_CHECKING:
    from .orchestrator import InteractionOrchestrator

logger = logging.getLogger(__name__)

CHECK_PROMPT = "It sounds like something is wrong. Are you okay?"
REPROMPT = "I didn't hear you. Please say 'I'm okay' if you are safe."
SAFE_MESSAGE = "I'm glad you are safe. Resuming."
ACTING_MESSAGE = "Emergency help has been contacted. Sending your location now."

DEFAULT_AFFIRMATIVE = ["ok", "okay", "fine", "good", "safe", "yes", "alright"]
DEFAULT_DISTRESS = ["no", "not", "help", "hurt", "pain", "call", "emergency"]

DEFAULT_POLICY = {
    Severity.HIGH: (1, 20),
    Severity.MEDIUM: (2, 30),
    Severity.LOW: (2, 30),
}

_WORD = re.compile(r"[a-z0-9']+")

# Words that flip a following affirmative ("not okay"), and how far back they reach
NEGATIONS = frozenset({"not", "never"})
NEGATION_REACH = 2


class ReplyOutcome(Enum):
    SAFE = "safe"
    DISTRESS = "distress"
    NO_RESPONSE = "no_response"
    AMBIGUOUS = "ambiguous"


def _reply_words(text: str) -> List[str]:
    """Lowercase words in order; "n't" becomes "not" and other contractions split."""
    text = text.lower().replace("n't", " not")
    words = []
    for token in _WORD.findall(text):
        words.extend(part for part in token.split("'") if part)
    return words


def classify_reply(text: Optional[str],
                   affirmative: Iterable[str] = DEFAULT_AFFIRMATIVE,
                   distress: Iterable[str] = DEFAULT_DISTRESS) -> ReplyOutcome:
    """
    Classify a spoken answer to "are you okay?".

    Affirmative words are checked first, so "No, I'm fine" is safe. An
    affirmative word negated within the two words before it ("not okay",
    "don't feel good", "not very good") counts as distress.
    """
    if not text or not text.strip():
        return ReplyOutcome.NO_RESPONSE

    words = _reply_words(text)
    affirmative = {w.lower() for w in affirmative}
    distress = {w.lower() for w in distress}

    negated = False
    found_affirmative = False
    for i, word in enumerate(words):
        if word not in affirmative:
            continue
        if any(prev in NEGATIONS for prev in words[max(0, i - NEGATION_REACH):i]):
            negated = True
        else:
            found_affirmative = True

    if negated:
        return ReplyOutcome.DISTRESS
    if found_affirmative:
        return ReplyOutcome.SAFE
    if distress.intersection(words):
        return ReplyOutcome.DISTRESS
    return ReplyOutcome.AMBIGUOUS


class EmergencyEscalation:
    """
    Normal -> EmergencyCheck -> {Normal, EmergencyActing}.

    EmergencyActing is terminal until the user presses the button; it never
    resumes on its own.
    """

    def __init__(self, orchestrator: 'InteractionOrchestrator'):
        self.orchestrator = orchestrator
        self.state = orchestrator.state
        self.arbiter = orchestrator.arbiter
        self.voice = orchestrator.voice
        self.feedback = orchestrator.feedback

        config = orchestrator.config
        self.affirmative = config.get('emergency.affirmative_keywords') or DEFAULT_AFFIRMATIVE
        self.distress = config.get('emergency.distress_keywords') or DEFAULT_DISTRESS
        self.policy = {}
        for severity, (attempts, window) in DEFAULT_POLICY.items():
            self.policy[severity] = (
                int(config.get(f'emergency.severity.{severity.value}.attempts', attempts)),
                float(config.get(f'emergency.severity.{severity.value}.listen_window', window)),
            )

        self._task: Optional[asyncio.Task] = None

        # Stats
        self.checks_started = 0
        self.attempts_made = 0
        self.alerts_sent = 0

    @property
    def active(self) -> bool:
        return self.state.mode in EMERGENCY_MODES

    def trigger(self, severity: Severity, source: str = "unknown") -> bool:
        """
        Enter EmergencyCheck and start verification.

        Returns:
            False if an emergency is already being handled
        """
        if self.active:
            logger.debug(f"Emergency already active, ignoring {source} ({severity.value})")
            return False

        logger.warning(f"🚨 Emergency check: {source} ({severity.value})")
        interaction = self.orchestrator.registry.begin_interaction()
        self.arbiter.stop_speaking()
        self.voice.stop_listening()

        self.state.emergency = EmergencySession(severity=severity, source=source,
                                                started_at=self.orchestrator.clock())
        self.orchestrator.set_mode(Mode.EMERGENCY_CHECK)
        self.checks_started += 1

        self.cancel()
        self._task = asyncio.ensure_future(self._verify(interaction))
        return True

    def cancel(self):
        """Stop verification without resolving anything."""
        task = self._task
        self._task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _verify(self, interaction: Interaction):
        session = self.state.emergency
        attempts, window = self.policy[session.severity]
        try:
            await self.arbiter.speak(CHECK_PROMPT, priority=True)
            interaction.checkpoint()

            for attempt in range(1, attempts + 1):
                if attempt > 1:
                    await self.arbiter.speak(REPROMPT, priority=True)
                    interaction.checkpoint()

                session.attempt = attempt
                self.attempts_made += 1
                try:
                    reply = await interaction.run(self.voice.listen(window))
                except InteractionCancelled:
                    raise
                except Exception as e:
                    logger.warning(f"Listen failed during emergency check: {e}")
                    reply = ""

                outcome = classify_reply(reply, self.affirmative, self.distress)
                logger.info(f"Emergency reply {attempt}/{attempts}: {reply!r} -> {outcome.value}")

                if outcome == ReplyOutcome.SAFE:
                    await self.arbiter.speak(SAFE_MESSAGE)
                    interaction.checkpoint()
                    self.orchestrator.resolve_emergency()
                    return
                if outcome == ReplyOutcome.DISTRESS:
                    break

            if self.state.mode == Mode.EMERGENCY_CHECK:
                await self.act()
        except InteractionCancelled:
            logger.debug("Emergency verification superseded")

    async def act(self):
        """Raise the alarm. Stays in EmergencyActing until the user resets."""
        self.orchestrator.set_mode(Mode.EMERGENCY_ACTING)
        self.feedback.play_sound('warning')
        self.alerts_sent += 1

        session = self.state.emergency
        severity = session.severity.value if session else "unknown"
        source = session.source if session else "unknown"
        location = self.orchestrator.last_location
        # Dispatch is simulated; delivering the alert is an outside integration
        logger.critical(
            f"SENDING ALERT: severity={severity} source={source} "
            f"location={location if location else 'unknown'}"
        )

        await self.arbiter.speak(ACTING_MESSAGE, priority=True)
