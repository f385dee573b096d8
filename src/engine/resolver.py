"""
Reverse-geocode resolution (cache-aside).

Pipeline per request:
    1. 입력 선택: lat/lon 직접 입력 > ip 기반 좌표 > MissingInput
    2. 좌표 검증 (finite + WGS84 범위)
    3. 정규화된 캐시 키 계산
    4. 캐시 조회 → hit 이면 source="cache"
    5. miss 이면 Nominatim 호출 (원본 좌표 사용)
    6. TTL과 함께 캐시 write-back → source="live"

No retries: a single upstream failure is surfaced immediately.
"""

import asyncio
import logging
import math
from typing import Mapping, Optional, Protocol, Set

from engine.cache import CacheEntry, CacheStore
from engine.errors import InvalidCoordinates, MissingInput, StoreError
from engine.models import Coordinate, IpLocation, ResolutionResult
from engine.normalize import key_for
from shared.constants import (
    DEFAULT_KEY_PRECISION,
    DEFAULT_TTL_DAYS,
    LAT_RANGE,
    LON_RANGE,
    SECONDS_PER_DAY,
    SOURCE_CACHE,
    SOURCE_LIVE,
)

logger = logging.getLogger("ReverseResolver")


class Geocoder(Protocol):
    async def reverse(self, coord: Coordinate) -> str:
        ...


class IpLocator(Protocol):
    async def locate(self, ip: str) -> IpLocation:
        ...


def parse_coordinates(lat, lon) -> Coordinate:
    """Parse and validate a lat/lon pair. Raises InvalidCoordinates."""
    try:
        lat_f = float(lat)
        lon_f = float(lon)
    except (TypeError, ValueError):
        raise InvalidCoordinates("lat and lon must be valid numbers")

    if not (math.isfinite(lat_f) and math.isfinite(lon_f)):
        raise InvalidCoordinates("lat and lon must be finite numbers")
    if not (LAT_RANGE[0] <= lat_f <= LAT_RANGE[1]) or not (LON_RANGE[0] <= lon_f <= LON_RANGE[1]):
        raise InvalidCoordinates("lat must be within [-90, 90] and lon within [-180, 180]")

    return Coordinate(lat=lat_f, lon=lon_f)


class ReverseGeocodeResolver:
    def __init__(
        self,
        store: CacheStore,
        geocoder: Geocoder,
        ip_locator: IpLocator,
        ttl_days: int = DEFAULT_TTL_DAYS,
        precision: int = DEFAULT_KEY_PRECISION,
        empty_address_is_hit: bool = True,
        strict_writes: bool = False,
        write_behind: bool = False,
    ):
        self.store = store
        self.geocoder = geocoder
        self.ip_locator = ip_locator
        self.ttl_seconds = ttl_days * SECONDS_PER_DAY
        self.precision = precision
        self.empty_address_is_hit = empty_address_is_hit
        self.strict_writes = strict_writes
        self.write_behind = write_behind
        self._pending: Set[asyncio.Task] = set()

    async def resolve(self, params: Mapping[str, Optional[str]]) -> ResolutionResult:
        """
        Resolve request parameters (`lat`, `lon`, `ip`) to an address.

        Raises MissingInput, InvalidCoordinates, LocationUnavailable,
        UpstreamError, and StoreError (strict writes only).
        """
        coord = await self._coordinates_from(params)
        key = key_for(coord.lat, coord.lon, self.precision)

        entry = await self._lookup(key)
        if entry is not None:
            logger.info(f"Cache hit: {key}")
            return ResolutionResult(address=entry.address, source=SOURCE_CACHE, coordinates=coord)

        address = await self.geocoder.reverse(coord)
        logger.info(f"Live lookup: {key} -> {address!r}")

        if self.write_behind and not self.strict_writes:
            task = asyncio.create_task(self._write_back(key, address))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        else:
            await self._write_back(key, address)

        return ResolutionResult(address=address, source=SOURCE_LIVE, coordinates=coord)

    async def _coordinates_from(self, params: Mapping[str, Optional[str]]) -> Coordinate:
        lat = params.get("lat")
        lon = params.get("lon")
        ip = params.get("ip")

        if lat and lon:
            return parse_coordinates(lat, lon)
        if ip:
            located = await self.ip_locator.locate(ip)
            return parse_coordinates(located.coordinates.lat, located.coordinates.lon)
        raise MissingInput("Either lat/lon coordinates or ip parameter is required")

    async def _lookup(self, key: str) -> Optional[CacheEntry]:
        try:
            entry = await self.store.get(key)
        except StoreError as e:
            logger.warning(f"Cache read failed, falling back to live lookup: {e}")
            return None
        if entry is not None and not entry.address and not self.empty_address_is_hit:
            return None
        return entry

    async def _write_back(self, key: str, address: str) -> None:
        try:
            await self.store.put(key, address, self.ttl_seconds)
        except StoreError as e:
            if self.strict_writes:
                raise
            logger.warning(f"Cache write-back failed for {key}: {e}")

    async def drain(self) -> None:
        """Wait for scheduled write-behind tasks to settle."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
