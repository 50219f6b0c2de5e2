"""
SightMate - Navigation Narrator
Speaks a walking route one step at a time.
"""

import asyncio
import logging
from enum import Enum
from typing import Optional, TYPE_CHECKING

from .session import Mode, NavigationPlan

if TYPE_CHECKING:
    from .orchestrator import InteractionOrchestrator

logger = logging.getLogger(__name__)

ARRIVAL_MESSAGE = "You have arrived."


class TickResult(Enum):
    ADVANCED = "advanced"
    BUSY = "busy"
    ARRIVED = "arrived"
    STOPPED = "stopped"


class NavigationNarrator:
    """
    Step state machine over a NavigationPlan.

    Runs as one task while the orchestrator is Navigating. Leaving that mode
    cancels the task; re-entering resumes at the current step.
    """

    def __init__(self, orchestrator: 'InteractionOrchestrator'):
        self.orchestrator = orchestrator
        self.state = orchestrator.state
        self.arbiter = orchestrator.arbiter
        self.feedback = orchestrator.feedback

        config = orchestrator.config
        self.step_duration = config.get('navigation.step_duration', 14)
        self.busy_backoff = config.get('navigation.busy_backoff', 3)

        self.plan: Optional[NavigationPlan] = None
        self.step_index = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def remaining_steps(self) -> int:
        if self.plan is None:
            return 0
        return max(0, len(self.plan.steps) - self.step_index)

    def begin(self, plan: NavigationPlan):
        """Load a fresh plan at step zero."""
        self.cancel_timer()
        self.plan = plan
        self.step_index = 0
        logger.info(f"Route to {plan.destination or 'destination'}: {len(plan.steps)} steps")

    def clear(self):
        """Drop the plan without announcing anything."""
        self.cancel_timer()
        self.plan = None
        self.step_index = 0

    def start(self):
        if self.plan is None or self.running:
            return
        self._task = asyncio.ensure_future(self._run())

    def cancel_timer(self):
        task = self._task
        self._task = None
        # Arrival changes mode from inside the narrator task itself
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _run(self):
        while True:
            result = await self.tick()
            if result in (TickResult.ARRIVED, TickResult.STOPPED):
                return
            if result == TickResult.BUSY:
                await asyncio.sleep(self.busy_backoff)

    async def tick(self) -> TickResult:
        """
        Advance the route by at most one step.

        Returns:
            ARRIVED after the final step, BUSY when speech is occupied,
            STOPPED when navigation is no longer active, else ADVANCED
        """
        if self.plan is None or self.state.mode != Mode.NAVIGATING:
            return TickResult.STOPPED

        if self.step_index >= len(self.plan.steps):
            await self._arrive()
            return TickResult.ARRIVED

        if self.arbiter.is_speaking:
            logger.debug("Speech busy, holding navigation step")
            return TickResult.BUSY

        instruction = self.plan.steps[self.step_index]
        logger.info(f"Step {self.step_index + 1}/{len(self.plan.steps)}: {instruction}")
        self.feedback.play_sound('navigation')
        await self.arbiter.speak(instruction)
        await asyncio.sleep(self.step_duration)

        if self.plan is None:
            return TickResult.STOPPED
        self.step_index += 1
        return TickResult.ADVANCED

    async def _arrive(self):
        destination = self.plan.destination if self.plan else ''
        logger.info(f"✓ Arrived at {destination or 'destination'}")
        self.plan = None
        self.step_index = 0
        self.orchestrator.finish_navigation()
        await self.arbiter.speak(ARRIVAL_MESSAGE)
