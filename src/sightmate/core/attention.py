"""
SightMate - Attention Arbiter
Single owner of the spoken-output channel and the camera.
"""

import asyncio
import logging
from typing import Optional

from .interfaces import SpeechOutput, Camera

logger = logging.getLogger(__name__)


class AttentionArbiter:
    """
    Speech is cancel-and-replace: at most one utterance is audible and a new
    one always cuts off the old. Camera access is a held lock; callers that
    must not wait get None instead of queueing.
    """

    def __init__(self, speech: SpeechOutput, camera: Camera):
        self.speech = speech
        self.camera = camera

        self._speech_task: Optional[asyncio.Task] = None
        self._camera_lock = asyncio.Lock()
        self.last_utterance = ""

    @property
    def is_speaking(self) -> bool:
        return self._speech_task is not None and not self._speech_task.done()

    @property
    def camera_busy(self) -> bool:
        return self._camera_lock.locked()

    def say(self, text: str, priority: bool = False) -> Optional[asyncio.Task]:
        """
        Start speaking without waiting for completion.

        The channel is claimed before this returns, so is_speaking is true
        immediately. Returns the utterance task, or None for empty text.
        """
        if not text:
            return None
        if priority or self.is_speaking:
            self.stop_speaking()

        self.last_utterance = text
        task = asyncio.ensure_future(self._utter(text, priority))
        self._speech_task = task
        return task

    async def speak(self, text: str, priority: bool = False):
        """
        Speak text, returning once it finishes or is cut off.

        A priority request, or any request while something is audible,
        interrupts the current utterance first.
        """
        task = self.say(text, priority)
        if task is not None:
            # Being interrupted by a newer utterance is a normal completion for the caller
            await asyncio.wait({task})

    async def _utter(self, text: str, priority: bool):
        logger.info(f"🔊 {'[priority] ' if priority else ''}{text}")
        try:
            await self.speech.speak(text)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Speech output failed: {e}")

    def stop_speaking(self):
        """Silence the current utterance immediately."""
        task = self._speech_task
        self._speech_task = None
        if task is not None and not task.done():
            task.cancel()
        try:
            self.speech.stop()
        except Exception as e:
            logger.error(f"Failed to stop speech: {e}")

    async def capture(self, low_res: bool = False, silent: bool = False,
                      block: bool = True) -> Optional[str]:
        """
        Grab one frame.

        Args:
            low_res: Downscaled frame for fast hazard checks
            silent: Suppress the shutter feedback
            block: Wait for the camera if busy; otherwise return None at once

        Returns:
            Base64 JPEG or None when no frame was obtained
        """
        if not block and self._camera_lock.locked():
            return None
        async with self._camera_lock:
            try:
                return await self.camera.capture(low_res, silent)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Capture failed: {e}")
                return None
