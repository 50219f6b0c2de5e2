"""
SightMate - Location
Coarse position lookup over HTTP.
"""

import asyncio
import logging

import requests

from ..core.error_handler import TransientServiceError, FatalServiceError
from ..core.interfaces import Coordinates
from ..utils import ConfigManager

logger = logging.getLogger(__name__)


class IPLocator:
    """
    IP-based geolocation.

    Desktop hardware has no GPS, so this is accurate to the city at best.
    """

    def __init__(self, config: ConfigManager):
        self.url = config.get('location.lookup_url', 'http://ip-api.com/json/')
        self.session = requests.Session()

    def _lookup(self, timeout: float) -> Coordinates:
        try:
            response = self.session.get(self.url, timeout=timeout)
        except requests.Timeout as e:
            raise TimeoutError(str(e)) from e
        except requests.ConnectionError as e:
            raise ConnectionError(str(e)) from e

        if response.status_code in (429, 500, 503):
            raise TransientServiceError(f"Location lookup returned {response.status_code}",
                                        status=response.status_code)
        if response.status_code != 200:
            raise FatalServiceError(f"Location lookup returned {response.status_code}")

        data = response.json()
        lat = data.get('lat', data.get('latitude'))
        lon = data.get('lon', data.get('longitude'))
        if lat is None or lon is None:
            raise FatalServiceError(f"Location lookup gave no coordinates: {data.get('message', data)}")
        return Coordinates(latitude=float(lat), longitude=float(lon))

    async def get_current_location(self, timeout: float) -> Coordinates:
        loop = asyncio.get_running_loop()
        coords = await loop.run_in_executor(None, self._lookup, timeout)
        logger.debug(f"Location: {coords}")
        return coords
