"""
SightMate - Camera
OpenCV frame grabber returning base64 JPEG frames.
"""

import asyncio
import base64
import logging
from typing import Callable, Optional

import cv2
import numpy as np

from ..utils import ConfigManager

logger = logging.getLogger(__name__)


def frame_brightness(frame: np.ndarray) -> float:
    """Mean luma on a 0-255 scale."""
    if frame is None or frame.size == 0:
        return 0.0
    if frame.ndim == 3:
        gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
    else:
        gray = frame
    return float(np.mean(gray))


def encode_frame_base64(frame: np.ndarray, quality: int = 80) -> Optional[str]:
    """Encode frame to base64 JPEG for model input."""
    ok, buffer = cv2.imencode('.jpg', frame, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        return None
    return base64.b64encode(buffer).decode('utf-8')


class CameraCapture:
    """
    Single camera owned through the attention arbiter.

    Low-resolution frames are half scale. A near-black frame (covered lens,
    auto-exposure still settling) is re-captured once after a short wait.
    """

    def __init__(self, config: ConfigManager, announce: Optional[Callable[[str], object]] = None):
        self.source = config.get('camera.source', 0)
        self.width = config.get('camera.width', 1280)
        self.height = config.get('camera.height', 720)
        self.brightness_threshold = config.get('camera.brightness_threshold', 15)
        self.dark_retry_delay = config.get('camera.dark_retry_delay', 0.6)
        self.jpeg_quality = config.get('camera.jpeg_quality', 80)
        self.low_res_quality = config.get('camera.low_res_jpeg_quality', 50)
        self.announce = announce
        self.cap = None

    def open(self) -> bool:
        if self.cap is not None and self.cap.isOpened():
            return True
        self.cap = cv2.VideoCapture(self.source)
        if not self.cap.isOpened():
            logger.error(f"✗ Cannot open camera {self.source}")
            self.cap = None
            return False
        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        logger.info(f"✓ Camera {self.source} opened")
        return True

    def release(self):
        if self.cap is not None:
            self.cap.release()
            self.cap = None

    def _say(self, text: str, silent: bool):
        if not silent and self.announce is not None:
            self.announce(text)

    def _read(self, low_res: bool) -> Optional[np.ndarray]:
        ret, frame = self.cap.read()
        if not ret or frame is None:
            return None
        if low_res:
            frame = cv2.resize(frame, None, fx=0.5, fy=0.5, interpolation=cv2.INTER_AREA)
        return frame

    async def capture(self, low_res: bool = False, silent: bool = False) -> Optional[str]:
        loop = asyncio.get_running_loop()
        if not await loop.run_in_executor(None, self.open):
            self._say("Camera is loading...", silent)
            return None

        self._say("Capturing image...", silent)
        frame = await loop.run_in_executor(None, self._read, low_res)
        if frame is None:
            return None

        if frame_brightness(frame) < self.brightness_threshold:
            self._say("The image appears to be black. Trying again...", silent)
            await asyncio.sleep(self.dark_retry_delay)
            retry = await loop.run_in_executor(None, self._read, low_res)
            if retry is not None:
                frame = retry

        quality = self.low_res_quality if low_res else self.jpeg_quality
        return encode_frame_base64(frame, quality)
