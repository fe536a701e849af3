"""Merge the outputs of a refresh cycle into one immutable snapshot."""

from __future__ import annotations

from typing import Mapping

from ..errors import SnapshotInvariantError
from ..store.schemas import (
    BankRecord,
    GroupDescriptor,
    GroupSnapshot,
    OracleReading,
    StakedAdjustment,
    TokenMetadataEntry,
)


def compose_snapshot(
    group: GroupDescriptor,
    banks: Mapping[str, BankRecord],
    accepted: Mapping[str, OracleReading],
    resolved: Mapping[str, OracleReading],
    adjusted: Mapping[str, StakedAdjustment],
    token_data: Mapping[str, TokenMetadataEntry],
    feed_map: Mapping[str, str],
) -> GroupSnapshot:
    """Build the snapshot, requiring exactly one price and token entry per bank."""

    prices = dict(accepted)
    prices.update(resolved)
    prices.update({address: outcome.reading for address, outcome in adjusted.items()})

    missing_prices = [address for address in banks if address not in prices]
    if missing_prices:
        raise SnapshotInvariantError(f"Banks without a price entry: {', '.join(missing_prices)}")
    unknown = [address for address in prices if address not in banks]
    if unknown:
        raise SnapshotInvariantError(f"Price entries for unknown banks: {', '.join(unknown)}")
    missing_tokens = [address for address in banks if address not in token_data]
    if missing_tokens:
        raise SnapshotInvariantError(f"Banks without token metadata: {', '.join(missing_tokens)}")

    return GroupSnapshot(
        group=group,
        banks=dict(banks),
        prices={address: prices[address] for address in banks},
        token_data={address: token_data[address] for address in banks},
        feed_map={address: feed_map[address] for address in banks if address in feed_map},
    )


__all__ = ["compose_snapshot"]
