"""Publish group snapshots to, and read them back from, the shared Redis cache."""

from __future__ import annotations

import json
from typing import Any, Dict, Mapping, Optional, Protocol

from redis import Redis

from ..config.settings import CacheConfig, get_app_config
from ..monitoring.logger import get_logger
from .schemas import GroupSnapshot

logger = get_logger(__name__)

SNAPSHOT_FIELDS = ("group", "banks", "priceInfos", "tokenDatas", "feedIdMap")


class CacheBackend(Protocol):
    def hset(self, key: str, mapping: Mapping[str, str]) -> Any:
        ...

    def hgetall(self, key: str) -> Mapping[Any, Any]:
        ...


class RedisCache:
    """Thin wrapper exposing the hash operations the publisher needs."""

    def __init__(self, config: Optional[CacheConfig] = None, client: Optional[Redis] = None) -> None:
        self._config = config or get_app_config().cache
        self._client = client or Redis.from_url(self._config.redis_url)

    def hset(self, key: str, mapping: Mapping[str, str]) -> Any:
        return self._client.hset(key, mapping=dict(mapping))

    def hgetall(self, key: str) -> Mapping[Any, Any]:
        return self._client.hgetall(key)


def group_key(group_address: str, prefix: str = "hash:group:") -> str:
    return f"{prefix}{group_address}"


def serialize_snapshot(snapshot: GroupSnapshot) -> Dict[str, str]:
    """Encode each sub-document of the snapshot as its own JSON string."""

    return {
        "group": json.dumps(snapshot.group.to_dict()),
        "banks": json.dumps({address: bank.to_dict() for address, bank in snapshot.banks.items()}),
        "priceInfos": json.dumps(
            {address: reading.to_dict() for address, reading in snapshot.prices.items()}
        ),
        "tokenDatas": json.dumps(
            {address: entry.to_dict() for address, entry in snapshot.token_data.items()}
        ),
        "feedIdMap": json.dumps(dict(snapshot.feed_map)),
    }


def publish_snapshot(
    cache: CacheBackend, snapshot: GroupSnapshot, *, key_prefix: str = "hash:group:"
) -> str:
    """Write all snapshot fields with a single HSET and return the cache key."""

    key = group_key(snapshot.group.address, key_prefix)
    cache.hset(key, serialize_snapshot(snapshot))
    logger.info("Updated group data", extra={"group": snapshot.group.address, "key": key})
    return key


def _decode(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


def read_group_snapshot(
    cache: CacheBackend, group_address: str, *, key_prefix: str = "hash:group:"
) -> Dict[str, Any]:
    """Return every snapshot field parsed independently; missing fields read as ``{}``."""

    stored = cache.hgetall(group_key(group_address, key_prefix)) or {}
    raw = {_decode(name): value for name, value in stored.items()}
    document: Dict[str, Any] = {}
    for name in SNAPSHOT_FIELDS:
        value = raw.get(name)
        document[name] = json.loads(_decode(value)) if value else {}
    return document


__all__ = [
    "CacheBackend",
    "RedisCache",
    "SNAPSHOT_FIELDS",
    "group_key",
    "publish_snapshot",
    "read_group_snapshot",
    "serialize_snapshot",
]
