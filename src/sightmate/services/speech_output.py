"""
SightMate - Speech Output
Text-to-speech, audio cue tones and haptic pulses.
"""

import asyncio
import logging
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
import pyaudio
import pyttsx3

from ..utils import ConfigManager

logger = logging.getLogger(__name__)

# (frequency Hz, start s, duration s, volume)
Tone = Tuple[float, float, float, float]

CUES: Dict[str, List[Tone]] = {
    'start': [(523.25, 0.0, 0.4, 0.15), (659.25, 0.15, 0.8, 0.1)],
    'end': [(659.25, 0.0, 0.15, 0.1), (523.25, 0.15, 0.3, 0.1)],
    'success': [(523.25, 0.0, 0.2, 0.1), (659.25, 0.1, 0.2, 0.1), (783.99, 0.2, 0.4, 0.1)],
    'error': [(220.0, 0.0, 0.4, 0.15), (196.0, 0.3, 0.5, 0.15)],
    'warning': [(880.0, 0.0, 0.1, 0.05), (880.0, 0.15, 0.1, 0.05)],
    'navigation': [(1046.5, 0.0, 0.8, 0.08)],
}

_TAG = re.compile(r'<[^>]*>')


class TextToSpeech:
    """
    pyttsx3 voice on a dedicated worker thread.

    pyttsx3 engines are bound to the thread that created them, so the engine
    is built and driven from a single-worker executor.
    """

    def __init__(self, config: ConfigManager):
        self.rate = config.get('audio.tts_rate', 190)
        self.volume = config.get('audio.tts_volume', 1.0)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="tts")
        self._engine = None
        self.is_speaking = False

    def _get_engine(self):
        if self._engine is None:
            self._engine = pyttsx3.init()
            self._engine.setProperty('rate', self.rate)
            self._engine.setProperty('volume', self.volume)
        return self._engine

    def _say_blocking(self, text: str):
        engine = self._get_engine()
        self.is_speaking = True
        try:
            engine.say(text)
            engine.runAndWait()
        finally:
            self.is_speaking = False

    async def speak(self, text: str) -> None:
        clean = _TAG.sub('', text).strip()
        if not clean:
            return
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(self._executor, self._say_blocking, clean)

    def stop(self) -> None:
        """Stop all speech playback."""
        if self._engine is not None and self.is_speaking:
            self._engine.stop()

    def close(self):
        self.stop()
        self._executor.shutdown(wait=False)


def synthesize_cue(tones: List[Tone], sample_rate: int = 44100) -> np.ndarray:
    """
    Render a tone sequence to a mono float buffer in [-1, 1].

    Each tone ramps up over 50ms, decays exponentially to a tenth of its
    volume by the end of its duration, then fades out over 100ms.
    """
    if not tones:
        return np.zeros(0, dtype=np.float32)

    total = max(start + duration for _, start, duration, _ in tones) + 0.15
    buffer = np.zeros(int(total * sample_rate), dtype=np.float32)

    for freq, start, duration, volume in tones:
        length = int((duration + 0.1) * sample_rate)
        t = np.arange(length) / sample_rate
        envelope = np.empty(length, dtype=np.float32)

        attack = t < 0.05
        envelope[attack] = volume * t[attack] / 0.05

        decay = (t >= 0.05) & (t < duration)
        decay_span = max(duration - 0.05, 1e-3)
        envelope[decay] = volume * np.power(0.1, (t[decay] - 0.05) / decay_span)

        release = t >= duration
        envelope[release] = volume * 0.1 * np.clip(1.0 - (t[release] - duration) / 0.1, 0.0, 1.0)

        offset = int(start * sample_rate)
        segment = (np.sin(2 * np.pi * freq * t) * envelope).astype(np.float32)
        end = min(offset + length, len(buffer))
        buffer[offset:end] += segment[:end - offset]

    return np.clip(buffer, -1.0, 1.0)


class AudioCues:
    """Short feedback tones and haptic pulses."""

    def __init__(self, config: ConfigManager):
        self.sample_rate = config.get('audio.sample_rate', 44100)
        self._cache: Dict[str, np.ndarray] = {}

    def get_cue(self, kind: str) -> Optional[np.ndarray]:
        if kind not in CUES:
            return None
        if kind not in self._cache:
            self._cache[kind] = synthesize_cue(CUES[kind], self.sample_rate)
        return self._cache[kind]

    def play_sound(self, kind: str) -> None:
        """Play a cue without blocking the caller."""
        audio = self.get_cue(kind)
        if audio is None:
            logger.warning(f"Unknown sound cue: {kind}")
            return
        threading.Thread(target=self._play, args=(audio,), daemon=True).start()

    def _play(self, audio_data: np.ndarray):
        try:
            samples = (audio_data * 32767).astype(np.int16)
            p = pyaudio.PyAudio()
            stream = p.open(format=pyaudio.paInt16,
                            channels=1,
                            rate=self.sample_rate,
                            output=True)
            stream.write(samples.tobytes())
            stream.stop_stream()
            stream.close()
            p.terminate()
        except Exception as e:
            logger.error(f"Error playing sound: {e}")

    def vibrate(self, pattern: Union[int, List[int]]) -> None:
        # No haptic motor on desktop hardware
        logger.debug(f"Vibrate: {pattern}")
