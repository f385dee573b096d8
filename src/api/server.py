import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.ip_locator import IpApiLocator
from api.nominatim import NominatimGeocoder
from engine.cache import build_cache_store
from engine.errors import GeocodeError
from engine.models import utc_timestamp
from engine.resolver import ReverseGeocodeResolver
from shared.config import Settings, settings
from shared.constants import SERVICE_NAME

logger = logging.getLogger("api")


def build_resolver(config: Settings, ip_locator: IpApiLocator) -> ReverseGeocodeResolver:
    """Wire the resolver from settings. Raises ValueError on a bad store config."""
    return ReverseGeocodeResolver(
        store=build_cache_store(config),
        geocoder=NominatimGeocoder(),
        ip_locator=ip_locator,
        ttl_days=config.CACHE_TTL_DAYS,
        precision=config.CACHE_KEY_PRECISION,
        empty_address_is_hit=config.CACHE_EMPTY_ADDRESS_IS_HIT,
        strict_writes=config.CACHE_STRICT_WRITES,
        write_behind=config.CACHE_WRITE_BEHIND,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    # 캐시 스토어는 기동 시 한 번만 생성 (설정 오류는 여기서 바로 실패)
    app.state.ip_locator = IpApiLocator()
    app.state.resolver = build_resolver(settings, app.state.ip_locator)
    yield
    await app.state.resolver.drain()
    await app.state.resolver.store.close()


async def get_ip_locator(request: Request) -> IpApiLocator:
    return request.app.state.ip_locator


async def get_resolver(request: Request) -> ReverseGeocodeResolver:
    return request.app.state.resolver


app = FastAPI(title="Where-Am-I Reverse Geocoding API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET"],
    allow_headers=["*"],
)


@app.exception_handler(GeocodeError)
async def geocode_error_handler(request: Request, exc: GeocodeError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_envelope())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.get("/health")
def health_check():
    return {"status": "ok", "service": SERVICE_NAME, "timestamp": utc_timestamp()}


@app.get("/api/v1/reverse")
async def reverse_endpoint(
    lat: Optional[str] = Query(None),
    lon: Optional[str] = Query(None),
    ip: Optional[str] = Query(None),
    resolver: ReverseGeocodeResolver = Depends(get_resolver),
):
    """
    좌표(또는 IP) → 주소. 캐시 우선, miss 시 Nominatim 호출 후 write-back.

    Response: { "address": "...", "source": "cache" | "live", "coordinates": {...}, "timestamp": "..." }
    """
    try:
        result = await resolver.resolve({"lat": lat, "lon": lon, "ip": ip})
    except GeocodeError:
        raise
    except Exception as e:
        logger.exception(f"Reverse geocoding error: {e}")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})
    return result.model_dump()


@app.get("/api/v1/ip-to-coords")
async def ip_to_coords_endpoint(
    ip: Optional[str] = Query(None),
    locator: IpApiLocator = Depends(get_ip_locator),
):
    """IP → 대략적인 좌표 + 도시/지역/국가 메타데이터"""
    if not ip:
        return JSONResponse(status_code=400, content={"error": "MISSING_INPUT: ip parameter is required"})
    try:
        located = await locator.locate(ip)
    except GeocodeError:
        raise
    except Exception as e:
        logger.exception(f"IP to coordinates error: {e}")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})
    return located.model_dump()
