"""
Tests for frame capture and encoding.
"""

import asyncio
import base64
import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import cv2
import numpy as np

from sightmate.services.camera import CameraCapture, frame_brightness, encode_frame_base64
from sightmate.utils import ConfigManager


def decode(b64: str) -> np.ndarray:
    data = np.frombuffer(base64.b64decode(b64), dtype=np.uint8)
    return cv2.imdecode(data, cv2.IMREAD_COLOR)


class FakeCapture:
    """cv2.VideoCapture stand-in that serves queued frames."""

    def __init__(self, frames):
        self.frames = list(frames)
        self.reads = 0
        self.released = False

    def isOpened(self):
        return True

    def read(self):
        self.reads += 1
        if not self.frames:
            return False, None
        return True, self.frames.pop(0)

    def release(self):
        self.released = True


def make_camera(frames):
    announced = []
    camera = CameraCapture(ConfigManager.from_dict({'camera': {'dark_retry_delay': 0}}),
                           announce=announced.append)
    camera.cap = FakeCapture(frames)
    return camera, announced


class TestFrameHelpers:
    """Tests for brightness and JPEG encoding."""

    def test_brightness(self):
        assert frame_brightness(np.zeros((10, 10, 3), dtype=np.uint8)) == 0.0
        assert frame_brightness(np.full((10, 10, 3), 255, dtype=np.uint8)) == 255.0
        assert frame_brightness(np.full((4, 4), 100, dtype=np.uint8)) == 100.0
        assert frame_brightness(None) == 0.0

    def test_encode(self):
        frame = np.full((48, 64, 3), 128, dtype=np.uint8)
        encoded = encode_frame_base64(frame, quality=70)
        assert base64.b64decode(encoded)[:2] == b'\xff\xd8'
        assert decode(encoded).shape == (48, 64, 3)


class TestCameraCapture:
    """Tests for capture with a fake device."""

    def test_full_resolution(self):
        frame = np.full((120, 160, 3), 128, dtype=np.uint8)
        camera, announced = make_camera([frame])
        encoded = asyncio.run(camera.capture())
        assert decode(encoded).shape == (120, 160, 3)
        assert announced == ["Capturing image..."]

    def test_low_res_is_half_scale_and_silent(self):
        frame = np.full((120, 160, 3), 128, dtype=np.uint8)
        camera, announced = make_camera([frame])
        encoded = asyncio.run(camera.capture(low_res=True, silent=True))
        assert decode(encoded).shape == (60, 80, 3)
        assert announced == []

    def test_dark_frame_retried_once(self):
        dark = np.zeros((40, 40, 3), dtype=np.uint8)
        bright = np.full((40, 40, 3), 200, dtype=np.uint8)
        camera, announced = make_camera([dark, bright])
        encoded = asyncio.run(camera.capture())

        assert camera.cap.reads == 2
        assert "The image appears to be black. Trying again..." in announced
        assert frame_brightness(decode(encoded)) > 150

    def test_read_failure(self):
        camera, _ = make_camera([])
        assert asyncio.run(camera.capture(silent=True)) is None

    def test_release(self):
        camera, _ = make_camera([])
        cap = camera.cap
        camera.release()
        assert cap.released
        assert camera.cap is None
