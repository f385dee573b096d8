"""
IP Geolocation Client (ipapi.co)

IP 주소 → 대략적인 WGS84 좌표 + 도시/지역/국가 메타데이터.
좌표가 없는 응답은 {0, 0}이 아니라 LocationUnavailable로 처리합니다.
"""

import asyncio
import ipaddress
import logging
from typing import Optional

import aiohttp

from engine.errors import LocationUnavailable, UpstreamError
from engine.models import Coordinate, IpLocation, LocationDetails
from shared.config import settings

logger = logging.getLogger("IpLocator")


def _parse_coordinate(value) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class IpApiLocator:
    def __init__(
        self,
        url_template: str = settings.IPAPI_URL,
        user_agent: str = settings.USER_AGENT,
        timeout_s: float = settings.HTTP_TIMEOUT_S,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.url_template = url_template
        self.user_agent = user_agent
        self.timeout = aiohttp.ClientTimeout(total=timeout_s)
        self._session = session

    async def locate(self, ip: str) -> IpLocation:
        try:
            ip = str(ipaddress.ip_address(ip.strip()))
        except ValueError as e:
            raise LocationUnavailable(f"{ip!r} is not a valid IP address") from e

        if self._session is not None:
            return await self._fetch(self._session, ip)
        async with aiohttp.ClientSession() as session:
            return await self._fetch(session, ip)

    async def _fetch(self, session: aiohttp.ClientSession, ip: str) -> IpLocation:
        url = self.url_template.format(ip=ip)
        headers = {"Accept": "application/json", "User-Agent": self.user_agent}

        try:
            async with session.get(url, headers=headers, timeout=self.timeout) as resp:
                if not 200 <= resp.status < 300:
                    logger.warning(f"[ipapi] lookup failed for {ip} with status: {resp.status}")
                    raise LocationUnavailable("Could not determine location for this IP address")
                data = await resp.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise UpstreamError("IP geolocation service timed out", status_code=504) from e
        except aiohttp.ClientError as e:
            raise UpstreamError(f"IP geolocation service unreachable: {e}", status_code=502) from e
        except ValueError as e:
            raise LocationUnavailable("IP geolocation service returned malformed data") from e

        if not isinstance(data, dict) or data.get("error"):
            reason = data.get("reason") if isinstance(data, dict) else None
            logger.info(f"[ipapi] no location for {ip}: {reason}")
            raise LocationUnavailable("Could not determine location for this IP address")

        lat = _parse_coordinate(data.get("latitude"))
        lon = _parse_coordinate(data.get("longitude"))
        if lat is None or lon is None:
            raise LocationUnavailable("Could not determine coordinates for this IP address")

        return IpLocation(
            ip=ip,
            coordinates=Coordinate(lat=lat, lon=lon),
            location=LocationDetails(
                city=data.get("city"),
                region=data.get("region"),
                country=data.get("country_name"),
                timezone=data.get("timezone"),
            ),
        )
