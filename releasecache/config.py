"""Application configuration loaded from environment variables."""

from dataclasses import dataclass
from enum import Enum

from pydantic_settings import BaseSettings


class CacheType(str, Enum):
    """Selectable result-cache backends."""

    DISABLED = "disabled"
    MEMORY = "memory"
    SQLITE = "sqlite"
    MONGODB = "mongodb"


@dataclass(frozen=True)
class CacheSettings:
    """Immutable snapshot of the cache configuration handed to the factory."""

    cache_type: CacheType = CacheType.MEMORY
    connection_string: str = ""
    ttl_seconds: int = 2100
    max_results_per_source: int = 1000
    data_folder: str = "./data"
    mongo_database: str = "releasecache"
    mongo_timeout_ms: int = 5000


class Settings(BaseSettings):
    """Central configuration — reads from environment / .env file."""

    # Result cache
    cache_type: CacheType = CacheType.MEMORY
    cache_connection_string: str = "cache.db"
    cache_ttl: int = 2100                       # 35 minutes
    cache_max_results_per_source: int = 1000
    data_folder: str = "./data"

    # MongoDB
    mongo_database: str = "releasecache"
    mongo_timeout_ms: int = 5000

    # Server
    host: str = "0.0.0.0"
    port: int = 9117
    allowed_origins: str = "*"
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def cache_enabled(self) -> bool:
        return self.cache_type != CacheType.DISABLED

    @property
    def cors_origins(self) -> list[str]:
        if self.allowed_origins == "*":
            return ["*"]
        return [o.strip() for o in self.allowed_origins.split(",")]

    def cache_settings(self) -> CacheSettings:
        return CacheSettings(
            cache_type=self.cache_type,
            connection_string=self.cache_connection_string,
            ttl_seconds=self.cache_ttl,
            max_results_per_source=self.cache_max_results_per_source,
            data_folder=self.data_folder,
            mongo_database=self.mongo_database,
            mongo_timeout_ms=self.mongo_timeout_ms,
        )


settings = Settings()
