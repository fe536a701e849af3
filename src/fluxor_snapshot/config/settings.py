"""Configuration management for the group snapshot service."""

from __future__ import annotations

import os
import tomllib
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, cast

from pydantic import AnyHttpUrl, BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..utils.constants import (
    DEFAULT_FEED_MAP_EXCLUSIONS,
    MARGINFI_PROGRAM_ID,
    STALE_SLACK_SECONDS,
    XIN_ASSET_ID,
    XIN_FEED_HASH,
)

DEFAULT_CONFIG_FILE = Path("config/app.toml")
CONFIG_FILE_ENV_VAR = "APP_CONFIG_FILE"
PROFILE_ENV_VAR = "SNAPSHOT_PROFILE"


class Environment(str, Enum):
    """Deployment profiles selectable from the config file."""

    PRODUCTION = "production"
    STAGING = "staging"


def _resolve_config_path() -> Path:
    env_value = os.getenv(CONFIG_FILE_ENV_VAR)
    if env_value:
        candidate = Path(env_value)
        if not candidate.is_absolute():
            candidate = Path.cwd() / candidate
        return candidate
    return Path.cwd() / DEFAULT_CONFIG_FILE


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result: Dict[str, Any] = {**base}
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(cast(Dict[str, Any], result[key]), value)
        else:
            result[key] = value
    return result


def _select_profile(data: Dict[str, Any]) -> Dict[str, Any]:
    if not data:
        return {}
    base_section = cast(Dict[str, Any], data.get("default", {}))
    requested = os.getenv(PROFILE_ENV_VAR)
    if not requested:
        mode_section = base_section.get("mode")
        if isinstance(mode_section, dict):
            requested = cast(str, mode_section.get("environment", Environment.PRODUCTION.value))
        elif isinstance(mode_section, str):
            requested = mode_section
    requested = (requested or Environment.PRODUCTION.value).lower()

    if requested in data and requested != "default":
        return _deep_merge(base_section, cast(Dict[str, Any], data[requested]))
    if base_section:
        return base_section
    return data


def _load_toml_config() -> Tuple[Dict[str, Any], Optional[Path]]:
    path = _resolve_config_path()
    if not path.exists():
        return {}, None
    with path.open("rb") as handle:
        payload = tomllib.load(handle)
    if not isinstance(payload, dict):
        return {}, path
    merged = dict(_select_profile(payload))
    mode_section = merged.get("mode")
    if isinstance(mode_section, dict):
        mode_section = dict(mode_section)
        mode_section.setdefault("config_file", str(path))
        merged["mode"] = mode_section
    else:
        merged["mode"] = {"config_file": str(path)}
    return merged, path


class ModeConfig(BaseModel):
    """Active profile bookkeeping."""

    environment: Environment = Field(default=Environment.PRODUCTION)
    config_file: Optional[Path] = None


class RPCConfig(BaseModel):
    """RPC configuration for Solana endpoints."""

    primary_url: AnyHttpUrl = Field(default="https://api.mainnet-beta.solana.com")
    fallback_urls: List[AnyHttpUrl] = Field(default_factory=list)
    request_timeout: float = Field(default=12.0, ge=1.0, le=60.0)
    commitment: str = Field(default="confirmed")
    batch_size: int = Field(default=100, ge=1, le=100)
    request_concurrency: int = Field(default=4, ge=1, le=64)

    @field_validator("fallback_urls", mode="before")
    @classmethod
    def _unique_urls(cls, value: Any) -> List[Any]:
        if isinstance(value, str):
            value = [item.strip() for item in value.split(",") if item.strip()]
        seen: set[str] = set()
        unique: List[Any] = []
        for url in cast(Iterable[Any], value):
            if str(url) not in seen:
                unique.append(url)
                seen.add(str(url))
        return unique

    @field_validator("request_timeout", mode="before")
    @classmethod
    def _parse_request_timeout(cls, value: Any) -> Any:
        if isinstance(value, str):
            return float(value)
        return value


class GroupConfig(BaseModel):
    """Which lending group the service snapshots."""

    program_id: str = Field(default=MARGINFI_PROGRAM_ID)
    group_address: str = Field(default="4X38G7YHpS1jjc7hAKvT2dzcGuTCaZfhyDx56Qs9Tk51")
    bank_addresses: List[str] = Field(default_factory=list)
    # Only consulted by the standalone feed-map fetch, never by refresh_group.
    feed_map_exclusions: List[str] = Field(
        default_factory=lambda: list(DEFAULT_FEED_MAP_EXCLUSIONS)
    )


class OracleConfig(BaseModel):
    """Price simulation endpoints and staleness policy."""

    crossbar_url: AnyHttpUrl = Field(default="https://crossbar.switchboard.xyz")
    crossbar_fallback_url: Optional[AnyHttpUrl] = None
    crossbar_fallback_username: Optional[str] = None
    crossbar_fallback_secret: Optional[str] = None
    request_timeout: float = Field(default=8.0, ge=0.5, le=60.0)
    stale_slack_seconds: int = Field(default=STALE_SLACK_SECONDS, ge=0)
    mixin_api_url: AnyHttpUrl = Field(default="https://api.mixin.one")
    feed_asset_overrides: Dict[str, str] = Field(
        default_factory=lambda: {XIN_FEED_HASH: XIN_ASSET_ID}
    )

    @field_validator("feed_asset_overrides", mode="after")
    @classmethod
    def _normalize_hashes(cls, value: Dict[str, str]) -> Dict[str, str]:
        return {key.lower().removeprefix("0x"): asset for key, asset in value.items()}


class StakingConfig(BaseModel):
    """Staked-collateral metadata source."""

    metadata_url: AnyHttpUrl = Field(
        default="https://storage.googleapis.com/mrgn-public/mrgn-staked-bank-metadata-cache.json"
    )
    metadata_ttl_seconds: int = Field(default=60, ge=0)
    http_timeout: float = Field(default=8.0, ge=0.5, le=60.0)
    max_workers: int = Field(default=8, ge=1, le=64)


class CacheConfig(BaseModel):
    """Shared cache the snapshot is published to."""

    redis_url: str = Field(default="redis://localhost:6379/0")
    key_prefix: str = Field(default="hash:group:")


class MonitoringConfig(BaseModel):
    """Logging configuration."""

    log_level: str = Field(default="INFO")


class AppConfig(BaseSettings):
    """Aggregated application configuration."""

    mode: ModeConfig = Field(default_factory=ModeConfig)
    rpc: RPCConfig = Field(default_factory=RPCConfig)
    group: GroupConfig = Field(default_factory=GroupConfig)
    oracle: OracleConfig = Field(default_factory=OracleConfig)
    staking: StakingConfig = Field(default_factory=StakingConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        def file_settings(_: Optional[BaseSettings] = None) -> Dict[str, Any]:
            payload, _ = _load_toml_config()
            return payload

        # Runtime environment variables win over static config file defaults.
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            file_settings,
            file_secret_settings,
        )

    @model_validator(mode="after")
    def _sync_rpc_override(self) -> "AppConfig":
        helius_url = os.getenv("HELIUS_RPC_URL")
        if not helius_url:
            helius_key = os.getenv("HELIUS_API_KEY")
            if helius_key:
                helius_url = f"https://mainnet.helius-rpc.com/?api-key={helius_key.strip()}"
        if helius_url:
            previous_primary = str(self.rpc.primary_url)
            self.rpc.primary_url = cast(AnyHttpUrl, helius_url)
            fallbacks = [str(url) for url in self.rpc.fallback_urls]
            if previous_primary not in fallbacks:
                fallbacks.insert(0, previous_primary)
            self.rpc.fallback_urls = cast(List[AnyHttpUrl], list(dict.fromkeys(fallbacks)))
        return self


@lru_cache(maxsize=1)
def get_app_config() -> AppConfig:
    """Create a cached application configuration object."""

    return AppConfig()


__all__ = [
    "AppConfig",
    "CacheConfig",
    "Environment",
    "GroupConfig",
    "ModeConfig",
    "MonitoringConfig",
    "OracleConfig",
    "RPCConfig",
    "StakingConfig",
    "get_app_config",
]
