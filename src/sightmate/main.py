"""
SightMate - Main Application
Wires the device adapters to the interaction orchestrator and maps the
Enter key to the single physical button.
"""

import argparse
import asyncio
import sys
import threading
from typing import Optional

from .utils import ConfigManager, setup_logging
from .core.orchestrator import InteractionOrchestrator
from .services.camera import CameraCapture
from .services.location import IPLocator
from .services.speech_output import TextToSpeech, AudioCues
from .services.vision_brain import VisionBrain
from .services.voice_input import VoiceInput, AmbientDistressListener


class SightMate:
    """Assistant process: one orchestrator plus its device adapters."""

    def __init__(self, config_path: str = "config/config.yaml", debug: bool = False,
                 camera_source: Optional[int] = None, distress: bool = True):
        self.config = ConfigManager(config_path)
        if camera_source is not None:
            self.config.config.setdefault('camera', {})['source'] = camera_source
        self.logger = setup_logging(self.config, debug=debug)
        self.logger.info("Initializing SightMate...")

        self.speech = TextToSpeech(self.config)
        self.cues = AudioCues(self.config)
        self.voice = VoiceInput(self.config)
        self.camera = CameraCapture(self.config)
        self.brain = VisionBrain(self.config)
        self.locator = IPLocator(self.config)
        self.distress: Optional[AmbientDistressListener] = None
        self.distress_enabled = distress
        self.orchestrator: Optional[InteractionOrchestrator] = None

    def _build(self) -> InteractionOrchestrator:
        # Keywords pause while the user gives a command; loud-noise sampling also pauses while the assistant talks
        if self.distress_enabled:
            self.distress = AmbientDistressListener(
                self.config,
                is_listening=lambda: self.voice.is_listening,
                is_busy=lambda: self.speech.is_speaking or self.voice.is_listening,
            )
        orchestrator = InteractionOrchestrator(
            self.config,
            speech=self.speech,
            voice=self.voice,
            camera=self.camera,
            brain=self.brain,
            feedback=self.cues,
            locator=self.locator,
            distress_source=self.distress,
        )
        self.camera.announce = orchestrator.arbiter.say
        return orchestrator

    def _read_keys(self, loop: asyncio.AbstractEventLoop, orchestrator: InteractionOrchestrator):
        """Stdin reader thread; hands every line to the event loop."""
        for line in sys.stdin:
            command = line.strip().lower()
            if command in ('q', 'quit', 'exit'):
                break
            if command == 'status':
                loop.call_soon_threadsafe(self._report_health, orchestrator)
                continue
            loop.call_soon_threadsafe(orchestrator.press_button)
        loop.call_soon_threadsafe(orchestrator.shutdown)

    def _report_health(self, orchestrator: InteractionOrchestrator):
        self.logger.info(f"Health: {orchestrator.watchdog.get_health_report()}")

    async def run(self):
        self.orchestrator = self._build()
        keys = threading.Thread(target=self._read_keys,
                                args=(asyncio.get_running_loop(), self.orchestrator),
                                daemon=True)
        keys.start()
        self.logger.info("Press Enter to speak, 'status' for a health report, 'q' to quit")
        try:
            await self.orchestrator.run()
        finally:
            self.camera.release()
            self.speech.close()
            self.logger.info("SightMate stopped")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description='SightMate - Voice-first visual assistant')

    parser.add_argument('--config', type=str, default='config/config.yaml',
                        help='Path to configuration file')
    parser.add_argument('--debug', action='store_true',
                        help='Verbose console logging')
    parser.add_argument('--camera', type=int, default=None,
                        help='Camera index (overrides camera.source in config)')
    parser.add_argument('--no-distress', action='store_true',
                        help='Disable the ambient distress listener')

    args = parser.parse_args()

    app = SightMate(config_path=args.config, debug=args.debug,
                    camera_source=args.camera, distress=not args.no_distress)
    try:
        asyncio.run(app.run())
    except KeyboardInterrupt:
        print("\nStopped by user")


if __name__ == "__main__":
    main()
