"""
Nominatim Reverse Geocoding Client

좌표(WGS84) → 사람이 읽을 수 있는 주소(display_name) 변환.
OSM Nominatim 이용 정책: 식별 가능한 User-Agent 필수, 1 req/sec 제한.
"""

import asyncio
import logging
from typing import Optional

import aiohttp

from engine.errors import UpstreamError
from engine.models import Coordinate
from engine.normalize import format_plain
from shared.config import settings

logger = logging.getLogger("NominatimClient")


class NominatimGeocoder:
    def __init__(
        self,
        url: str = settings.NOMINATIM_URL,
        user_agent: str = settings.USER_AGENT,
        timeout_s: float = settings.HTTP_TIMEOUT_S,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.url = url
        self.user_agent = user_agent
        self.timeout = aiohttp.ClientTimeout(total=timeout_s)
        self._session = session

    async def reverse(self, coord: Coordinate) -> str:
        """
        Resolve a coordinate to Nominatim's display_name.

        Returns "" when the provider has no address for the point (e.g. open
        sea). Raises UpstreamError with the provider status on non-2xx.
        """
        if self._session is not None:
            return await self._fetch(self._session, coord)
        async with aiohttp.ClientSession() as session:
            return await self._fetch(session, coord)

    async def _fetch(self, session: aiohttp.ClientSession, coord: Coordinate) -> str:
        params = {
            "format": "jsonv2",
            "lat": format_plain(coord.lat),
            "lon": format_plain(coord.lon),
            "zoom": "18",
            "addressdetails": "1",
        }
        headers = {"Accept": "application/json", "User-Agent": self.user_agent}

        try:
            async with session.get(self.url, params=params, headers=headers, timeout=self.timeout) as resp:
                if not 200 <= resp.status < 300:
                    logger.warning(f"[Nominatim] reverse failed for ({coord.lat}, {coord.lon}) with status: {resp.status}")
                    raise UpstreamError("Upstream geocoding service error", status_code=resp.status)
                data = await resp.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise UpstreamError("Upstream geocoding service timed out", status_code=504) from e
        except aiohttp.ClientError as e:
            raise UpstreamError(f"Upstream geocoding service unreachable: {e}", status_code=502) from e
        except ValueError as e:
            raise UpstreamError("Upstream geocoding service returned malformed JSON", status_code=502) from e

        if not isinstance(data, dict):
            return ""
        return data.get("display_name") or ""
