"""Shared constants for group snapshot construction."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def unix_now() -> int:
    return int(utc_now().timestamp())


LAMPORTS_PER_SOL = 1_000_000_000

MARGINFI_PROGRAM_ID = "MFv2hWf31Z9kbCa1snEPYctwafyhdvnV7FZnsebVacA"
PYTH_PUSH_ORACLE_PROGRAM_ID = "pythWSnswVUd12oZpeFP8e9CVaEqJg25g1Vtc2biRsT"
SINGLE_POOL_PROGRAM_ID = "SVSPxpvHdN29nkVg9rPapPNDddN5DipNLRUFhyjFThE"
DEFAULT_PUBKEY = "11111111111111111111111111111111"

# Shard ids under which push-oracle price accounts are sponsored.
PYTH_SPONSORED_SHARD_ID = 0
MARGINFI_SPONSORED_SHARD_ID = 3301

# Byte offset of the group field inside a bank account (discriminator + mint + decimals).
BANK_GROUP_OFFSET = 8 + 32 + 1

STALE_SLACK_SECONDS = 10

PYTH_PRICE_CONF_INTERVALS = "2.12"
SWB_PRICE_CONF_INTERVALS = "1.96"
MAX_CONFIDENCE_INTERVAL_RATIO = "0.05"

XIN_FEED_HASH = "3a763682892910586fed762422247c344565edbfe2788116391771d79e09dc4c"
XIN_ASSET_ID = "c94ac88f-4671-3976-b60a-09064f1811e8"

DEFAULT_FEED_MAP_EXCLUSIONS = ("3jt43us",)

__all__ = [
    "utc_now",
    "unix_now",
    "LAMPORTS_PER_SOL",
    "MARGINFI_PROGRAM_ID",
    "PYTH_PUSH_ORACLE_PROGRAM_ID",
    "SINGLE_POOL_PROGRAM_ID",
    "DEFAULT_PUBKEY",
    "PYTH_SPONSORED_SHARD_ID",
    "MARGINFI_SPONSORED_SHARD_ID",
    "BANK_GROUP_OFFSET",
    "STALE_SLACK_SECONDS",
    "PYTH_PRICE_CONF_INTERVALS",
    "SWB_PRICE_CONF_INTERVALS",
    "MAX_CONFIDENCE_INTERVAL_RATIO",
    "XIN_FEED_HASH",
    "XIN_ASSET_ID",
    "DEFAULT_FEED_MAP_EXCLUSIONS",
]
