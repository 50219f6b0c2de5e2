"""
SightMate - Voice Input
Command transcription and the ambient distress listener.
"""

import asyncio
import logging
import threading
import time
from typing import Callable, Optional

import numpy as np
import pyaudio
import speech_recognition as sr

from ..core.distress import (
    classify_phrase, LoudNoiseDetector, DEFAULT_HIGH_KEYWORDS, DEFAULT_MEDIUM_KEYWORDS,
)
from ..core.interfaces import DistressCallback
from ..core.session import Severity
from ..utils import ConfigManager

logger = logging.getLogger(__name__)


class VoiceInput:
    """
    Push-to-talk transcription with SpeechRecognition.

    The microphone is only ever opened by one worker thread at a time. The
    worker waits for speech in short polls and checks a stop flag between
    them, so stop_listening() releases the microphone within one poll.
    """

    def __init__(self, config: ConfigManager):
        self.silence_timeout = config.get('interaction.silence_timeout', 2.5)
        self.poll_interval = config.get('interaction.listen_poll', 0.25)
        self.recognizer = sr.Recognizer()
        # Stop a phrase after this much trailing silence
        self.recognizer.pause_threshold = self.silence_timeout
        self.microphone = None
        self.is_listening = False
        self._stop_event: Optional[asyncio.Event] = None
        self._stop_flag = threading.Event()
        self._mic_lock = threading.Lock()
        self._worker: Optional[asyncio.Future] = None

        try:
            self.microphone = sr.Microphone()
            self._calibrate_microphone()
            logger.info("✓ Voice input initialized")
        except Exception as e:
            logger.error(f"✗ Failed to initialize voice input: {e}")

    def _calibrate_microphone(self):
        """Calibrate microphone for ambient noise."""
        with self._mic_lock, self.microphone as source:
            logger.info("Calibrating microphone for ambient noise...")
            self.recognizer.adjust_for_ambient_noise(source, duration=0.5)

    def _capture_phrase(self, timeout: float) -> Optional[sr.AudioData]:
        deadline = time.monotonic() + timeout
        with self._mic_lock, self.microphone as source:
            while not self._stop_flag.is_set():
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                try:
                    return self.recognizer.listen(source, timeout=min(self.poll_interval, remaining),
                                                  phrase_time_limit=timeout)
                except sr.WaitTimeoutError:
                    continue
        return None

    def _listen_blocking(self, timeout: float) -> str:
        audio = self._capture_phrase(timeout)
        if audio is None or self._stop_flag.is_set():
            return ""
        try:
            text = self.recognizer.recognize_google(audio)
        except sr.UnknownValueError:
            return ""
        logger.info(f"User said: {text}")
        return text

    async def listen(self, timeout: float) -> str:
        """Return the transcript, or an empty string on silence or stop."""
        if self.microphone is None:
            return ""

        # A stopped worker lets go of the microphone within one poll
        if self._worker is not None and not self._worker.done():
            await asyncio.wait({self._worker})

        loop = asyncio.get_running_loop()
        self._stop_flag.clear()
        self._stop_event = asyncio.Event()
        self.is_listening = True
        try:
            recognition = loop.run_in_executor(None, self._listen_blocking, timeout)
            self._worker = recognition
            stopped = asyncio.ensure_future(self._stop_event.wait())
            try:
                done, _ = await asyncio.wait({recognition, stopped},
                                             timeout=timeout + self.silence_timeout,
                                             return_when=asyncio.FIRST_COMPLETED)
            finally:
                stopped.cancel()
            if recognition in done:
                return recognition.result()
            return ""
        finally:
            self._stop_flag.set()
            self.is_listening = False
            self._stop_event = None

    def stop_listening(self) -> None:
        self._stop_flag.set()
        if self._stop_event is not None:
            self._stop_event.set()


class AmbientDistressListener:
    """
    Keyword spotter plus loud-noise monitor on the open microphone.

    Both run on background threads and hand events to the event loop with
    call_soon_threadsafe. Keywords are dropped while `is_listening()` is true,
    since the user is talking to the assistant. Loud-noise samples are
    dropped while `is_busy()` is true, which also covers the assistant's own
    voice. A shout of "help" over the assistant's speech still gets through.
    """

    def __init__(self, config: ConfigManager,
                 is_listening: Callable[[], bool] = lambda: False,
                 is_busy: Callable[[], bool] = lambda: False):
        self.high_keywords = config.get('distress.high_keywords') or DEFAULT_HIGH_KEYWORDS
        self.medium_keywords = config.get('distress.medium_keywords') or DEFAULT_MEDIUM_KEYWORDS
        self.poll_interval = config.get('distress.noise_poll_interval', 0.2)
        self.sample_rate = 16000
        self.is_listening = is_listening
        self.is_busy = is_busy

        self.noise = LoudNoiseDetector(
            threshold=config.get('distress.amplitude_threshold', 0.85),
            debounce=config.get('distress.noise_debounce', 5),
        )

        self.recognizer = sr.Recognizer()
        self._stop_keywords = None
        self._noise_thread = None
        self._monitoring = False
        self._callback: Optional[DistressCallback] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def start_distress_listener(self, callback: DistressCallback) -> None:
        self._callback = callback
        self._loop = asyncio.get_running_loop()
        self._monitoring = True

        microphone = sr.Microphone()
        with microphone as source:
            self.recognizer.adjust_for_ambient_noise(source, duration=0.5)
        self._stop_keywords = self.recognizer.listen_in_background(
            microphone, self._on_phrase, phrase_time_limit=3
        )

        self._noise_thread = threading.Thread(target=self._noise_worker, daemon=True)
        self._noise_thread.start()

    def stop_distress_listener(self) -> None:
        self._monitoring = False
        if self._stop_keywords is not None:
            self._stop_keywords(wait_for_stop=False)
            self._stop_keywords = None

    def _emit(self, signal_type: str, severity: Severity, detail: str = ""):
        if self._loop is not None and self._callback is not None:
            self._loop.call_soon_threadsafe(self._callback, signal_type, severity, detail)

    def _on_phrase(self, recognizer: sr.Recognizer, audio: sr.AudioData):
        if not self._monitoring or self.is_listening():
            return
        try:
            text = recognizer.recognize_google(audio).lower()
        except sr.UnknownValueError:
            return
        except sr.RequestError as e:
            logger.error(f"Speech recognition error: {e}")
            return

        severity = classify_phrase(text, self.high_keywords, self.medium_keywords)
        if severity is not None:
            self._emit(f"keyword_{severity.value}", severity, text)

    def _on_samples(self, data: bytes):
        """Feed one block of 16-bit mono audio to the loud-noise detector."""
        if self.is_busy():
            return
        samples = np.frombuffer(data, dtype=np.int16)
        if samples.size == 0:
            return
        amplitude = float(np.abs(samples.astype(np.float32)).max() / 32768.0)
        if self.noise.feed(amplitude):
            logger.info(f"Loud noise detected: {amplitude:.2f}")
            self._emit('loud_noise', Severity.MEDIUM, f"{amplitude:.2f}")

    def _noise_worker(self):
        chunk = int(self.sample_rate * self.poll_interval)
        p = pyaudio.PyAudio()
        stream = None
        try:
            stream = p.open(format=pyaudio.paInt16, channels=1, rate=self.sample_rate,
                            input=True, frames_per_buffer=chunk)
            while self._monitoring:
                self._on_samples(stream.read(chunk, exception_on_overflow=False))
        except Exception as e:
            logger.error(f"Noise monitor stopped: {e}")
        finally:
            if stream is not None:
                stream.stop_stream()
                stream.close()
            p.terminate()
