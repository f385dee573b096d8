from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    CACHE_BACKEND: str = "memory"           # "memory" | "redis"
    CACHE_TABLE: str = ""                   # redis 키 네임스페이스 (redis 백엔드 필수)
    CACHE_TTL_DAYS: int = 7
    CACHE_MAX_ENTRIES: int = 100            # memory 백엔드 최대 엔트리 수
    CACHE_KEY_PRECISION: int = 5
    CACHE_EMPTY_ADDRESS_IS_HIT: bool = True
    CACHE_STRICT_WRITES: bool = False
    CACHE_WRITE_BEHIND: bool = False
    REDIS_URL: str = "redis://localhost:6379/0"

    NOMINATIM_URL: str = "https://nominatim.openstreetmap.org/reverse"
    IPAPI_URL: str = "https://ipapi.co/{ip}/json/"
    USER_AGENT: str = "where-am-i-app/1.0"   # Nominatim 이용 정책상 필수
    HTTP_TIMEOUT_S: float = 10.0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
