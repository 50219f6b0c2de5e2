"""
SightMate - Vision Brain
Intent classification, scene answers, hazard checks and route plans from
local Ollama models.
"""

import json
import logging
import time
from typing import Any, Dict, Optional

import ollama

from ..core.intents import Intent, IntentType
from ..core.interfaces import Coordinates
from ..core.session import NavigationPlan, WalkingHazard
from ..utils import ConfigManager

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are SightMate, a gentle and supportive assistant for a blind or low-vision user. "
    "Respond with 2-4 clear, informative sentences. Be warm and encouraging."
)

READER_SYSTEM_PROMPT = (
    "You are a precise Document Reading Assistant. Your task is to perform OCR and read text "
    "exactly as it appears. Do not summarize unless explicitly asked. "
    "Do not add descriptions of the image."
)

UNREADABLE_TEXT = "I'm having trouble reading this. Please adjust the camera a little."
NO_TEXT = "I don't see any readable text here."

INTENT_PROMPT = """Classify the user's voice command into one of these categories.

1. COMPANION_INTENTS:
   - COMPANION_MODE_ON: "Start companion mode", "Stay with me", "Talk to me", "Be my friend".
   - COMPANION_MODE_OFF: "Stop companion mode", "Quiet mode", "Leave me alone".

2. VISUAL_INTENTS (Requires Camera):
   - DESCRIBE: "What is this?", "Describe the scene".
   - READ_TEXT: "Read this", "Read the document", "What does this say?".
   - SAFETY_CHECK: "Is it safe?", "Check for cars".
   - WHERE_AM_I: "Where am I?", "What is my location?".

3. NAVIGATION_INTENTS:
   - NAVIGATE: "Take me to [Place]", "Go to [Place]".
   - STOP_NAVIGATION: "Stop navigation", "Cancel route".

4. CONTROL_INTENTS:
   - WALKING_MODE_ON: "Start walking mode", "Hands free on".
   - WALKING_MODE_OFF: "Stop walking mode", "Hands free off".

Answer with JSON only: {{"intent": "<CATEGORY>", "destination": "<place or empty>", "detailLevel": "simple|detailed"}}

User said: "{transcript}"
"""

HAZARD_PROMPT = """DETECT DANGER. FAST.
Categories:
- ground: holes, cracks, wet, steps, drop-offs, uneven.
- obstacle: poles, walls, low headroom.
- moving: cars, bikes, runners.
- structural: glass, doors, debris.
- animal: dogs, cattle.
- personal: approaching person.
- fall: camera on ground, sky only, sideways horizon, floor closeup.

Output JSON for the SINGLE HIGHEST RISK with keys hazard_type, category, description,
direction (left|center|right|unknown), distance (near|medium|far|unknown),
severity (high|medium|low), confidence (0-1), message.
Priority: FALL > HIGH severity > NEAR distance > MOVING.
If confidence < 0.35 or no danger, hazard_type="none" and category="none".
"message": MAX 3-5 words. Direct command.
"""

ROUTE_PROMPT = (
    'Give walking directions from {origin} to {destination}. '
    'Answer with JSON only: {{"destination": "", "steps": [""], "totalDistance": "", "totalTime": ""}}'
)


def extract_json(text: str) -> Optional[Dict[str, Any]]:
    """Pull the outermost JSON object out of a model reply."""
    if not text:
        return None
    start = text.find('{')
    end = text.rfind('}')
    if start == -1 or end <= start:
        return None
    try:
        data = json.loads(text[start:end + 1])
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


class VisionBrain:
    """Async Ollama client wrapper for every model question the orchestrator asks."""

    def __init__(self, config: ConfigManager, client: Optional[ollama.AsyncClient] = None):
        self.config = config
        self.primary_model = config.get('models.llm.primary', 'gemma3:4b')
        self.vision_model = config.get('models.llm.vision', 'moondream')
        self.temperature = config.get('models.llm.temperature', 0.5)
        self.hazard_max_tokens = config.get('models.llm.hazard_max_tokens', 200)
        self.client = client or ollama.AsyncClient(
            host=config.get('models.llm.host', 'http://localhost:11434')
        )

        self._total_requests = 0
        self._total_processing_time = 0.0

        logger.info(f"Vision brain initialized (text: {self.primary_model}, vision: {self.vision_model})")

    async def _generate(self, model: str, prompt: str, images=None, system: str = "",
                        json_mode: bool = False, **options) -> str:
        start = time.time()
        self._total_requests += 1
        kwargs = {
            'model': model,
            'prompt': prompt,
            'options': {'temperature': self.temperature, **options},
        }
        if images:
            kwargs['images'] = images
        if system:
            kwargs['system'] = system
        if json_mode:
            kwargs['format'] = 'json'
        try:
            response = await self.client.generate(**kwargs)
        finally:
            elapsed = time.time() - start
            self._total_processing_time += elapsed
            if elapsed > 2.0:
                logger.info(f"Slow Ollama call ({model}) completed in {elapsed:.2f}s")
        return (response['response'] or '').strip()

    async def classify_intent(self, transcript: str) -> Intent:
        if not transcript or not transcript.strip():
            return Intent(type=IntentType.UNKNOWN, original_query='', confidence=0.0)

        raw = await self._generate(self.primary_model, INTENT_PROMPT.format(transcript=transcript),
                                   json_mode=True, temperature=0.1)
        data = extract_json(raw)
        if data is None:
            raise ValueError(f"Unparseable intent reply: {raw[:80]!r}")
        return Intent.from_dict(data, transcript)

    async def analyze_image(self, frame: str, intent: Intent,
                            location: Optional[Coordinates] = None) -> str:
        system = SYSTEM_PROMPT
        temperature = self.temperature

        if intent.type == IntentType.WHERE_AM_I:
            gps = str(location) if location else 'Unknown'
            prompt = f"Tell me exactly where I am in 2-3 sentences. (GPS: {gps})"
        elif intent.type == IntentType.SAFETY_CHECK:
            prompt = "Scan for danger. Describe the path's safety in 2-3 sentences."
        elif intent.type == IntentType.READ_TEXT:
            system = READER_SYSTEM_PROMPT
            temperature = 0.1
            prompt = (
                "Read the text in this image.\n"
                "Rules:\n"
                f'1. If the text is hard to see (blur, low light, cut off), return EXACTLY: "{UNREADABLE_TEXT}"\n'
                f'2. If there is NO visible text, return EXACTLY: "{NO_TEXT}"\n'
                "3. If text IS found, return ONLY the text content, top to bottom.\n"
                '4. Do NOT say "The text says". Just output the text.'
            )
        else:
            detail = "5-6" if intent.detail_level == 'detailed' else "3-4"
            prompt = f'Describe the scene in {detail} warm, informative sentences. User asked: "{intent.original_query}"'

        try:
            answer = await self._generate(self.vision_model, prompt, images=[frame],
                                          system=system, temperature=temperature)
        except ollama.ResponseError as e:
            logger.error(f"Scene analysis failed: {e}")
            if e.status_code == 429:
                return "I'm a bit overwhelmed right now. Please try again in a moment."
            return "Connection error."
        except ConnectionError as e:
            logger.error(f"Scene analysis failed: {e}")
            return "Connection error."
        return answer or "I couldn't see clearly."

    async def analyze_walking_safety(self, frame: str) -> Optional[WalkingHazard]:
        """One hazard check. No retries: a skipped frame beats a stale one."""
        try:
            raw = await self._generate(self.vision_model, HAZARD_PROMPT, images=[frame],
                                       json_mode=True, temperature=0.1,
                                       num_predict=self.hazard_max_tokens)
        except (ollama.ResponseError, ConnectionError) as e:
            logger.warning(f"Hazard analysis error, skipping frame: {e}")
            return None

        data = extract_json(raw)
        if data is None:
            logger.debug(f"Hazard reply not JSON: {raw[:80]!r}")
            return None
        return WalkingHazard.from_dict(data)

    async def get_walking_directions(self, destination: str,
                                     coords: Optional[Coordinates] = None) -> Optional[NavigationPlan]:
        origin = str(coords) if coords else "my location"
        raw = await self._generate(self.primary_model,
                                   ROUTE_PROMPT.format(origin=origin, destination=destination),
                                   json_mode=True)
        data = extract_json(raw)
        if data is None:
            return None
        if not data.get('destination'):
            data['destination'] = destination
        return NavigationPlan.from_dict(data)

    def get_stats(self) -> Dict:
        """Get statistics about model usage."""
        return {
            'total_requests': self._total_requests,
            'avg_processing_time': self._total_processing_time / max(1, self._total_requests),
        }
