"""
Where-Am-I 공유 상수 정의

좌표 범위, 캐시 키 정밀도, 응답 출처 라벨 등
프로젝트 전역에서 사용되는 불변 값들을 중앙 관리합니다.
"""

# ─── 좌표 범위 (WGS84) ────────────────────────────────────
LAT_RANGE = (-90.0, 90.0)
LON_RANGE = (-180.0, 180.0)

# ─── 캐시 ─────────────────────────────────────────────────
DEFAULT_KEY_PRECISION = 5          # 소수점 5자리 ≈ 적도 기준 1.1m
SECONDS_PER_DAY = 86_400
DEFAULT_TTL_DAYS = 7

# ─── 응답 출처 (Provenance) ───────────────────────────────
SOURCE_CACHE = "cache"
SOURCE_LIVE = "live"

# ─── 서버 설정 ────────────────────────────────────────────
SERVICE_NAME = "where-am-i-api"
DEV_PORT = 8000
