"""Collaborators shared by every stage of a refresh cycle."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

import requests

from ..config.settings import AppConfig, get_app_config
from ..ingestion.ledger import LedgerClient
from ..ingestion.mixin_api import MixinAssetClient
from ..ingestion.staking import StakeMetadataLoader
from ..store.cache import CacheBackend, RedisCache
from ..utils.constants import unix_now


@dataclass(slots=True)
class PipelineContext:
    """Built once by the host and passed to each refresh."""

    config: AppConfig
    ledger: LedgerClient
    http: requests.Session
    cache: CacheBackend
    stake_metadata: StakeMetadataLoader
    asset_prices: MixinAssetClient
    clock: Callable[[], int] = field(default=unix_now)

    @classmethod
    def from_config(
        cls,
        config: Optional[AppConfig] = None,
        *,
        session: Optional[requests.Session] = None,
        cache: Optional[CacheBackend] = None,
    ) -> "PipelineContext":
        app_config = config or get_app_config()
        http = session or requests.Session()
        return cls(
            config=app_config,
            ledger=LedgerClient(app_config.rpc),
            http=http,
            cache=cache or RedisCache(app_config.cache),
            stake_metadata=StakeMetadataLoader(app_config.staking, session=http),
            asset_prices=MixinAssetClient(app_config.oracle, session=http),
        )


__all__ = ["PipelineContext"]
