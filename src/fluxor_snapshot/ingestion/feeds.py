"""Resolve each bank's oracle configuration to one concrete oracle account."""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from solders.pubkey import Pubkey

from ..errors import FeedResolutionError, OracleDecodeError
from ..monitoring.logger import get_logger
from ..store.schemas import BankRecord
from ..utils.constants import (
    MARGINFI_SPONSORED_SHARD_ID,
    PYTH_PUSH_ORACLE_PROGRAM_ID,
    PYTH_SPONSORED_SHARD_ID,
)
from .banks import LedgerReader, decode_bank, list_group_bank_addresses
from .oracles import PUSH_SETUPS, decode_price_update

logger = get_logger(__name__)

PUSH_ORACLE_SHARDS: Tuple[int, ...] = (PYTH_SPONSORED_SHARD_ID, MARGINFI_SPONSORED_SHARD_ID)


def derive_push_oracle_address(feed_id: bytes, shard_id: int) -> str:
    """Price-update account of the push-oracle program for ``feed_id`` on ``shard_id``."""

    address, _ = Pubkey.find_program_address(
        [shard_id.to_bytes(2, "little"), bytes(feed_id)],
        Pubkey.from_string(PYTH_PUSH_ORACLE_PROGRAM_ID),
    )
    return str(address)


def _feed_id(bank: BankRecord) -> bytes:
    if not bank.config.oracle_keys:
        raise FeedResolutionError(f"Bank {bank.address} has no oracle keys configured")
    return bytes(Pubkey.from_string(bank.config.oracle_keys[0]))


def _newest_publish_time(data: Optional[bytes]) -> Optional[int]:
    if data is None:
        return None
    try:
        return int(decode_price_update(data).publish_time)
    except OracleDecodeError:
        return None


def resolve_feeds(ledger: LedgerReader, banks: Mapping[str, BankRecord]) -> Dict[str, str]:
    """Return bank address -> oracle account address for every bank.

    Push-style banks carry a feed id rather than an account address. Both
    sponsored shards are derived for each feed id and read together; the
    existing account with the newest publish time is used.
    """

    feed_map: Dict[str, str] = {}
    candidates: Dict[str, List[str]] = {}
    for address, bank in banks.items():
        if bank.config.oracle_setup in PUSH_SETUPS:
            feed_id = _feed_id(bank)
            candidates[address] = [
                derive_push_oracle_address(feed_id, shard) for shard in PUSH_ORACLE_SHARDS
            ]
        elif bank.config.oracle_keys:
            feed_map[address] = bank.config.oracle_keys[0]
        else:
            raise FeedResolutionError(f"Bank {address} has no oracle keys configured")

    if candidates:
        lookup = list(dict.fromkeys(key for keys in candidates.values() for key in keys))
        try:
            accounts = ledger.read_accounts(lookup)
        except Exception as exc:  # noqa: BLE001
            raise FeedResolutionError(f"Feed shard lookup failed: {exc}") from exc
        publish_times = {
            key: _newest_publish_time(account.data if account is not None else None)
            for key, account in zip(lookup, accounts)
        }
        for address, keys in candidates.items():
            best: Optional[str] = None
            best_time = -1
            for key in keys:
                publish_time = publish_times.get(key)
                if publish_time is not None and publish_time > best_time:
                    best, best_time = key, publish_time
            if best is None:
                raise FeedResolutionError(
                    f"No price update account exists for bank {address} on any sponsored shard"
                )
            feed_map[address] = best

    # Preserve bank order so hand-offs stay aligned with discovery.
    return {address: feed_map[address] for address in banks}


def _excluded(address: str, exclusions: Iterable[str]) -> bool:
    return any(fragment and fragment in address for fragment in exclusions)


def fetch_feed_map(context, group_address: str) -> Dict[str, str]:
    """Standalone feed-map fetch: scan the group's banks, drop excluded addresses, resolve."""

    config = context.config.group
    addresses = list_group_bank_addresses(context.ledger, config.program_id, group_address)
    kept = [address for address in addresses if not _excluded(address, config.feed_map_exclusions)]
    if len(kept) < len(addresses):
        logger.info(
            "Excluded banks from feed map",
            extra={"group": group_address, "excluded": len(addresses) - len(kept)},
        )
    accounts = context.ledger.read_accounts(kept)
    banks = {
        account.address: decode_bank(account.address, account.data)
        for account in accounts
        if account is not None
    }
    return resolve_feeds(context.ledger, banks)


__all__ = ["PUSH_ORACLE_SHARDS", "derive_push_oracle_address", "fetch_feed_map", "resolve_feeds"]
