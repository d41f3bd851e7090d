import datetime as dt
from enum import Enum

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from frontdesk.domain.models import ClinicHours


class StorageBackend(Enum):
    SQL = "sql"
    MEMORY = "memory"


class ClinicConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CLINIC_", env_file=".env", extra="ignore")

    open_time: dt.time = dt.time(9, 0)
    close_time: dt.time = dt.time(18, 0)
    slot_granularity_minutes: int = Field(default=30, gt=0)

    def hours(self) -> ClinicHours:
        return ClinicHours(
            open_time=self.open_time,
            close_time=self.close_time,
            slot_granularity_minutes=self.slot_granularity_minutes,
        )


class StorageConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="STORAGE_", env_file=".env", extra="ignore")

    backend: StorageBackend = StorageBackend.SQL
    dsn: str = "sqlite+aiosqlite:///./frontdesk.db"
    echo: bool = False
    create_schema: bool = True

    @field_validator("dsn")
    @classmethod
    def _must_be_async(cls, v: str) -> str:
        if "+asyncpg" not in v and "+aiosqlite" not in v:
            raise ValueError("STORAGE_DSN must use an async driver (+asyncpg or +aiosqlite)")
        return v


class RegistrationConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="REGISTRATION_", env_file=".env", extra="ignore")

    lookup_attempts: int = Field(default=3, ge=1)
    lookup_backoff_seconds: float = Field(default=0.05, ge=0)
    stress_medium_threshold: float = 17
    stress_high_threshold: float = 27


class AppConfig(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    clinic: ClinicConfig = Field(default_factory=ClinicConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    registration: RegistrationConfig = Field(default_factory=RegistrationConfig)
