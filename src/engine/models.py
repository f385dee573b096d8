from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision, e.g. 2024-05-01T12:00:00.000Z"""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class Coordinate(BaseModel):
    lat: float
    lon: float


class LocationDetails(BaseModel):
    city: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None
    timezone: Optional[str] = None


class IpLocation(BaseModel):
    ip: str
    coordinates: Coordinate
    location: LocationDetails = Field(default_factory=LocationDetails)
    timestamp: str = Field(default_factory=utc_timestamp)


class ResolutionResult(BaseModel):
    address: str
    source: Literal["cache", "live"]
    coordinates: Coordinate
    timestamp: str = Field(default_factory=utc_timestamp)
