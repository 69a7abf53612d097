import os
from functools import lru_cache
from pathlib import Path
from typing import Annotated

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    NoDecode,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from hvsum.schemas import SummaryLength

APP_NAME = "hvsum"


def default_config_dir() -> Path:
    explicit = os.environ.get("HVSUM_CONFIG_DIR")
    if explicit:
        return Path(explicit).expanduser()
    xdg_home = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg_home).expanduser() if xdg_home else Path.home() / ".config"
    return base / APP_NAME


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="HVSUM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    config_dir: Path = Field(default_factory=default_config_dir)

    default_model: str = "gemma3"
    default_length: SummaryLength = SummaryLength.detailed
    debug_mode: bool = False
    session_persist: bool = True
    session_max_age_days: int = 30
    max_search_results: int = 8

    cache_enabled: bool = True
    cache_backend: str = "file"
    cache_ttl_hours: int = 24
    pending_grace_hours: float = 1.0
    redis_url: str = "redis://localhost:6379/0"

    search_concurrency: int = 3
    search_providers: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["duckduckgo", "serpapi"]
    )
    serpapi_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("serpapi_key", "HVSUM_SERPAPI_KEY", "SERPAPI_KEY"),
    )
    search_timeout_seconds: int = 10
    serpapi_timeout_seconds: int = 15
    fetch_timeout_seconds: int = 30

    ollama_url: str = "http://localhost:11434"
    llm_timeout_seconds: int = 300

    deepseek_enabled: bool = True
    deepseek_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "deepseek_api_key", "HVSUM_DEEPSEEK_API_KEY", "DEEPSEEK_API_KEY"
        ),
    )
    deepseek_base_url: str = "https://api.deepseek.com"
    deepseek_model: str = "deepseek-reasoner"
    deepseek_max_tokens: int = 32000

    @field_validator("search_providers", mode="before")
    @classmethod
    def _parse_providers(cls, value: str | list[str] | None) -> list[str]:
        if value is None:
            return ["duckduckgo", "serpapi"]
        if isinstance(value, str):
            return [item.strip().lower() for item in value.split(",") if item.strip()]
        return [item.strip().lower() for item in value if item.strip()]

    @field_validator("cache_backend")
    @classmethod
    def _validate_backend(cls, value: str) -> str:
        backend = value.strip().lower()
        if backend not in {"file", "memory", "redis"}:
            raise ValueError(f"unsupported cache backend: {value}")
        return backend

    @property
    def cache_dir(self) -> Path:
        return self.config_dir / "cache"

    @property
    def sessions_dir(self) -> Path:
        return self.config_dir / "sessions"

    @property
    def config_file(self) -> Path:
        return self.config_dir / "config.json"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        json_settings = JsonConfigSettingsSource(
            settings_cls, json_file=default_config_dir() / "config.json"
        )
        return (init_settings, env_settings, dotenv_settings, json_settings)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
