"""One refresh cycle: discover, price, compose and publish a group snapshot."""

from __future__ import annotations

import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, Optional

from ..ingestion.banks import discover_banks
from ..ingestion.crossbar import resolve_stale_feeds
from ..ingestion.feeds import resolve_feeds
from ..ingestion.oracles import classify_readings, read_group, read_ledger_batch
from ..ingestion.staking import adjust_staked_prices
from ..monitoring.logger import correlation_scope, get_logger
from ..monitoring.metrics import METRICS
from ..store.cache import publish_snapshot
from ..store.schemas import GroupSnapshot
from .composer import compose_snapshot
from .context import PipelineContext

logger = get_logger(__name__)


def _run_cycle(
    context: PipelineContext,
    group_address: str,
    bank_addresses: Optional[Iterable[str]],
) -> GroupSnapshot:
    config = context.config
    ledger = context.ledger

    with ThreadPoolExecutor(max_workers=2) as executor:
        banks_future = executor.submit(
            discover_banks, ledger, config.group.program_id, group_address, bank_addresses
        )
        group_future = executor.submit(read_group, ledger, group_address)
        banks = banks_future.result()
        group = group_future.result()

    feed_map = resolve_feeds(ledger, banks)
    batch = read_ledger_batch(ledger, banks, feed_map)
    routed = classify_readings(
        banks,
        batch.oracles,
        now=context.clock(),
        slack=config.oracle.stale_slack_seconds,
    )
    METRICS.increment("oracle.stale_feeds", len(routed.stale_pull))

    resolved, _ = resolve_stale_feeds(context, routed.stale_pull)
    adjusted = adjust_staked_prices(context, routed.staked)

    snapshot = compose_snapshot(
        group,
        banks,
        routed.accepted,
        resolved,
        adjusted,
        batch.token_data,
        feed_map,
    )
    publish_snapshot(context.cache, snapshot, key_prefix=config.cache.key_prefix)
    return snapshot


def refresh_group(
    context: PipelineContext,
    group_address: Optional[str] = None,
    bank_addresses: Optional[Iterable[str]] = None,
) -> GroupSnapshot:
    """Refresh and publish the snapshot for ``group_address``.

    Falls back to the configured group and bank allowlist when arguments are
    omitted. Any failure propagates before the cache is written.
    """

    group_address = group_address or context.config.group.group_address
    if bank_addresses is None and context.config.group.bank_addresses:
        bank_addresses = list(context.config.group.bank_addresses)

    cycle_id = uuid.uuid4().hex[:12]
    started = time.perf_counter()
    with correlation_scope(cycle_id):
        try:
            snapshot = _run_cycle(context, group_address, bank_addresses)
        except Exception:
            METRICS.increment("snapshot.refresh.failure")
            logger.exception("Error refreshing group data for %s", group_address)
            raise
        finally:
            METRICS.observe("snapshot.refresh.duration_seconds", time.perf_counter() - started)
        METRICS.increment("snapshot.refresh.success")
        METRICS.gauge("snapshot.banks", len(snapshot.banks))
        logger.info(
            "Refreshed group snapshot",
            extra={"group": group_address, "bank_count": len(snapshot.banks)},
        )
    return snapshot


__all__ = ["refresh_group"]
