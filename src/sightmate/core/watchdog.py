"""
Watchdog

Checks that the perception loop is still alive while walking and restarts
it when it stalls.
"""

import asyncio
import logging
import time
from typing import Dict, Optional, TYPE_CHECKING

import psutil

from .session import ACTIVE_WALKING_MODES

if TYPE_CHECKING:
    from .orchestrator import InteractionOrchestrator

logger = logging.getLogger(__name__)

FAILSAFE_MESSAGE = "Walking mode active."


class Watchdog:
    """
    Fixed-interval liveness check on the perception heartbeat.

    Features:
    - Stalled loop detection while Walking/Navigating
    - Forced restart with guard reset
    - Spoken failsafe notice
    - Resource usage in the health report
    """

    def __init__(self, orchestrator: 'InteractionOrchestrator'):
        self.orchestrator = orchestrator
        self.state = orchestrator.state

        config = orchestrator.config
        self.interval = config.get('watchdog.interval', 2)
        self.stale_threshold = config.get('watchdog.stale_threshold', 2)
        self.stale_checks = config.get('watchdog.stale_checks', 2)

        self._task: Optional[asyncio.Task] = None
        self.checks = 0
        self.restarts = 0
        self.consecutive_stale = 0
        self.last_restart: Optional[float] = None

        self.process = psutil.Process()
        self.start_time = time.time()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.running:
            return
        self._task = asyncio.ensure_future(self._run())
        logger.info("Watchdog started")

    def stop(self):
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.check()
            except Exception as e:
                logger.error(f"Watchdog check failed: {e}")

    def heartbeat_age(self) -> float:
        return self.orchestrator.clock() - self.state.last_activity

    def check(self) -> bool:
        """
        Run one liveness check.

        The loop is restarted only after `stale_checks` consecutive checks
        found the heartbeat older than `stale_threshold`.

        Returns:
            True if the perception loop was restarted
        """
        self.checks += 1
        if self.state.mode not in ACTIVE_WALKING_MODES:
            self.consecutive_stale = 0
            return False

        age = self.heartbeat_age()
        if age <= self.stale_threshold:
            self.consecutive_stale = 0
            return False

        self.consecutive_stale += 1
        if self.consecutive_stale < self.stale_checks:
            logger.debug(f"Perception heartbeat stale ({age:.1f}s), "
                         f"{self.consecutive_stale}/{self.stale_checks}")
            return False

        logger.warning(f"Perception loop stalled ({age:.1f}s since last cycle), restarting")
        self.consecutive_stale = 0
        self.restarts += 1
        self.last_restart = self.orchestrator.clock()
        self.state.last_activity = self.last_restart
        self.orchestrator.perception.restart()
        self.orchestrator.arbiter.say(FAILSAFE_MESSAGE)
        return True

    def get_system_metrics(self) -> Dict[str, float]:
        """Get system resource usage metrics"""
        try:
            return {
                'cpu_percent': self.process.cpu_percent(),
                'memory_mb': self.process.memory_info().rss / 1024 / 1024,
                'memory_percent': self.process.memory_percent(),
                'uptime_minutes': (time.time() - self.start_time) / 60
            }
        except psutil.Error:
            return {}

    def get_health_report(self) -> Dict:
        """Snapshot of loop liveness and process resources."""
        perception = self.orchestrator.perception
        return {
            'mode': self.state.mode.value,
            'perception': {
                'running': perception.running,
                'heartbeat_age': self.heartbeat_age(),
                'cycles': perception.cycles,
                'dropped_cycles': perception.dropped_cycles,
                'hazards_announced': perception.hazards_announced,
            },
            'navigation': {
                'active': self.state.navigating,
                'remaining_steps': self.orchestrator.narrator.remaining_steps,
            },
            'speech': {
                'speaking': self.orchestrator.arbiter.is_speaking,
                'last_utterance': self.orchestrator.arbiter.last_utterance,
            },
            'watchdog': {
                'checks': self.checks,
                'restarts': self.restarts,
            },
            'errors': self.orchestrator.error_handler.get_error_stats(),
            'system': self.get_system_metrics(),
        }
