from typing import Literal
from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )
    url: str = Field(
        default="sqlite+aiosqlite:///./arena.db", alias="DATABASE_URL"
    )
    echo: bool = Field(default=False, alias="DATABASE_ECHO")


class ArenaSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )
    store_backend: Literal["memory", "sql"] = Field(
        default="memory", alias="ARENA_STORE_BACKEND"
    )
    room_code_max_attempts: int = Field(
        default=20, alias="ARENA_ROOM_CODE_MAX_ATTEMPTS"
    )
    distractor_max_attempts: int = Field(
        default=200, alias="ARENA_DISTRACTOR_MAX_ATTEMPTS"
    )
    store_commit_retries: int = Field(default=5, alias="ARENA_STORE_COMMIT_RETRIES")

    # Pronunciation side channel
    pronounce_delay_sec: float = Field(default=0.5, alias="ARENA_PRONOUNCE_DELAY_SEC")
    pronounce_lang: str = Field(default="zh-CN", alias="ARENA_PRONOUNCE_LANG")
    pronounce_rate: float = Field(default=0.8, alias="ARENA_PRONOUNCE_RATE")


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )
    name: str = Field(default="vocab-arena", alias="APP_NAME")
    version: str = Field(default="v1", alias="API_VERSION")
    port: int = Field(default=9000, alias="APP_PORT")
    mode: str = Field(default="prod", alias="MODE")

    @computed_field
    def is_production(self) -> bool:
        return self.mode != "dev"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    app: AppSettings = Field(default_factory=lambda: AppSettings())
    database: DatabaseSettings = Field(default_factory=lambda: DatabaseSettings())
    arena: ArenaSettings = Field(default_factory=lambda: ArenaSettings())

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


settings = Settings()
