"""Stale pull-feed resolution through price simulation endpoints."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import requests

from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS
from ..store.schemas import ZERO, FeedResolution, OracleReading, ResolutionSource
from .oracles import StaleFeed, feed_hashes

logger = get_logger(__name__)

DEFAULT_HEADERS = {"Accept": "application/json"}


def normalize_feed_hash(value: object) -> str:
    return str(value or "").strip().lower().removeprefix("0x")


def parse_sample(value: object) -> Optional[Decimal]:
    """Parse one simulation sample; numbers and numeric strings are accepted."""

    if value is None or isinstance(value, bool):
        return None
    try:
        sample = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    return sample if sample.is_finite() else None


def median(samples: Sequence[Decimal]) -> Decimal:
    ordered = sorted(samples)
    if not ordered:
        return ZERO
    middle = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[middle]
    return (ordered[middle - 1] + ordered[middle]) / 2


@dataclass(slots=True)
class SimulationBatch:
    resolved: Dict[str, List[Decimal]] = field(default_factory=dict)
    broken: List[str] = field(default_factory=list)


class CrossbarClient:
    """Client for one ``/simulate`` endpoint."""

    def __init__(
        self,
        session: requests.Session,
        base_url: str,
        *,
        timeout: float,
        username: Optional[str] = None,
        secret: Optional[str] = None,
        label: str = "primary",
    ) -> None:
        self._session = session
        self._base_url = str(base_url).rstrip("/")
        self._timeout = timeout
        self._auth = (username, secret) if username and secret else None
        self.label = label

    def simulate(self, hashes: Sequence[str]) -> SimulationBatch:
        """Simulate ``hashes`` in one request and split them into resolved and broken.

        A feed is broken when its first sample is missing or not numeric, or when it
        is absent from the response. Any transport or decoding failure marks every
        requested feed broken.
        """

        requested = [normalize_feed_hash(value) for value in hashes]
        if not requested:
            return SimulationBatch()
        path = ",".join(f"0x{value}" for value in requested)
        try:
            response = self._session.get(
                f"{self._base_url}/simulate/{path}",
                headers=DEFAULT_HEADERS,
                auth=self._auth,
                timeout=self._timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Simulation request to %s crossbar failed: %s", self.label, exc)
            return SimulationBatch(broken=requested)
        if not isinstance(payload, list):
            logger.warning("Unexpected %s crossbar payload type %s", self.label, type(payload).__name__)
            return SimulationBatch(broken=requested)

        wanted = set(requested)
        batch = SimulationBatch()
        for entry in payload:
            if not isinstance(entry, dict):
                continue
            feed_hash = normalize_feed_hash(entry.get("feedHash"))
            if feed_hash not in wanted or feed_hash in batch.resolved:
                continue
            results = entry.get("results") or []
            if not isinstance(results, list) or not results or parse_sample(results[0]) is None:
                continue
            samples = [sample for sample in map(parse_sample, results) if sample is not None]
            batch.resolved[feed_hash] = samples
        batch.broken = [value for value in requested if value not in batch.resolved]
        return batch


def _price_with_override(
    context, feed_hash: str, overrides: Mapping[str, str]
) -> Optional[Decimal]:
    asset_id = overrides.get(feed_hash)
    if not asset_id:
        return None
    return context.asset_prices.fetch_asset_price(asset_id)


def resolve_stale_feeds(
    context, stale: Mapping[str, StaleFeed]
) -> Tuple[Dict[str, OracleReading], Dict[str, FeedResolution]]:
    """Price every stale pull feed, returning readings keyed by bank address.

    The primary endpoint sees the whole batch; the fallback, when configured, only
    the feeds the primary could not price. Feeds still unpriced are looked up
    through the asset override table and otherwise get a zero reading that keeps
    the stale on-chain timestamp.
    """

    if not stale:
        return {}, {}
    oracle_config = context.config.oracle
    overrides = oracle_config.feed_asset_overrides
    hashes = feed_hashes(list(stale.values()))

    primary = CrossbarClient(
        context.http,
        str(oracle_config.crossbar_url),
        timeout=oracle_config.request_timeout,
        label="primary",
    )
    batch = primary.simulate(hashes)
    METRICS.increment("crossbar.broken_feeds.primary", len(batch.broken))
    resolutions: Dict[str, FeedResolution] = {
        feed_hash: FeedResolution(feed_hash, ResolutionSource.PRIMARY, samples)
        for feed_hash, samples in batch.resolved.items()
    }
    broken = batch.broken

    if broken and oracle_config.crossbar_fallback_url:
        fallback = CrossbarClient(
            context.http,
            str(oracle_config.crossbar_fallback_url),
            timeout=oracle_config.request_timeout,
            username=oracle_config.crossbar_fallback_username,
            secret=oracle_config.crossbar_fallback_secret,
            label="fallback",
        )
        fallback_batch = fallback.simulate(broken)
        METRICS.increment("crossbar.broken_feeds.fallback", len(fallback_batch.broken))
        for feed_hash, samples in fallback_batch.resolved.items():
            resolutions[feed_hash] = FeedResolution(feed_hash, ResolutionSource.FALLBACK, samples)
        broken = fallback_batch.broken

    for resolution in resolutions.values():
        resolution.price = max(median(resolution.samples), ZERO)
        if resolution.price == ZERO:
            override_price = _price_with_override(context, resolution.feed_hash, overrides)
            if override_price is not None:
                resolution.price = override_price
                resolution.source = ResolutionSource.ASSET_OVERRIDE

    for feed_hash in broken:
        override_price = _price_with_override(context, feed_hash, overrides)
        if override_price is not None:
            resolutions[feed_hash] = FeedResolution(
                feed_hash, ResolutionSource.ASSET_OVERRIDE, [override_price], override_price
            )
        else:
            resolutions[feed_hash] = FeedResolution(feed_hash, ResolutionSource.UNRESOLVED)

    unresolved = [h for h, r in resolutions.items() if r.source is ResolutionSource.UNRESOLVED]
    if unresolved:
        METRICS.increment("crossbar.unresolved_feeds", len(unresolved))
        logger.warning(
            "Couldn't fetch from crossbar feeds: %s",
            ", ".join(f"`{value}`" for value in unresolved),
        )

    now = context.clock()
    readings: Dict[str, OracleReading] = {}
    for bank_address, feed in stale.items():
        resolution = resolutions[normalize_feed_hash(feed.feed_hash)]
        if resolution.source is ResolutionSource.UNRESOLVED or resolution.price is None:
            readings[bank_address] = OracleReading.zero(feed.timestamp)
        else:
            readings[bank_address] = OracleReading.flat(resolution.price, now)
    return readings, resolutions


__all__ = [
    "CrossbarClient",
    "SimulationBatch",
    "median",
    "normalize_feed_hash",
    "parse_sample",
    "resolve_stale_feeds",
]
