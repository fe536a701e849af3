"""Binary layouts for the on-chain accounts the snapshot reads."""

from __future__ import annotations

import hashlib
from decimal import Decimal

from construct import (
    Array,
    Bytes,
    BytesInteger,
    Float64l,
    If,
    Int8ul,
    Int16ul,
    Int32sl,
    Int32ul,
    Int64sl,
    Int64ul,
    Padding,
    Struct,
    this,
)
from spl.token._layouts import MINT_LAYOUT

PUBLIC_KEY_LAYOUT = Bytes(32)
WRAPPED_I80F48 = BytesInteger(16, signed=True, swapped=True)
I128 = BytesInteger(16, signed=True, swapped=True)

_I80F48_ONE = Decimal(2**48)
_SWITCHBOARD_PRECISION = Decimal(10**18)


def account_discriminator(name: str) -> bytes:
    """Return the 8-byte Anchor discriminator for an account type."""

    return hashlib.sha256(f"account:{name}".encode()).digest()[:8]


BANK_DISCRIMINATOR = account_discriminator("Bank")
GROUP_DISCRIMINATOR = account_discriminator("MarginfiGroup")
PRICE_UPDATE_V2_DISCRIMINATOR = account_discriminator("PriceUpdateV2")
PULL_FEED_DISCRIMINATOR = account_discriminator("PullFeedAccountData")


def i80f48_to_decimal(raw: int) -> Decimal:
    return Decimal(raw) / _I80F48_ONE


def switchboard_to_decimal(raw: int) -> Decimal:
    return Decimal(raw) / _SWITCHBOARD_PRECISION


BANK_CONFIG_LAYOUT = Struct(
    "asset_weight_init" / WRAPPED_I80F48,
    "asset_weight_maint" / WRAPPED_I80F48,
    "liability_weight_init" / WRAPPED_I80F48,
    "liability_weight_maint" / WRAPPED_I80F48,
    "deposit_limit" / Int64ul,
    # interest rate config: eight I80F48 values plus reserved space
    Padding(8 * 16 + 64),
    "operational_state" / Int8ul,
    "oracle_setup" / Int8ul,
    "oracle_keys" / Array(5, PUBLIC_KEY_LAYOUT),
    Padding(6),
    "borrow_limit" / Int64ul,
    "risk_tier" / Int8ul,
    "asset_tag" / Int8ul,
    Padding(6),
    "total_asset_value_init_limit" / Int64ul,
    "oracle_max_age" / Int16ul,
    Padding(6 + 32),
)

BANK_LAYOUT = Struct(
    "discriminator" / Bytes(8),
    "mint" / PUBLIC_KEY_LAYOUT,
    "mint_decimals" / Int8ul,
    "group" / PUBLIC_KEY_LAYOUT,
    Padding(7),
    "asset_share_value" / WRAPPED_I80F48,
    "liability_share_value" / WRAPPED_I80F48,
    # liquidity, insurance and fee vaults with their bumps and outstanding fees
    Padding(32 + 2 + 32 + 2 + 4 + 16 + 32 + 2 + 6 + 16),
    "total_liability_shares" / WRAPPED_I80F48,
    "total_asset_shares" / WRAPPED_I80F48,
    "last_update" / Int64sl,
    "config" / BANK_CONFIG_LAYOUT,
    "flags" / Int64ul,
    "emissions_rate" / Int64ul,
    "emissions_remaining" / WRAPPED_I80F48,
    "emissions_mint" / PUBLIC_KEY_LAYOUT,
)

GROUP_LAYOUT = Struct(
    "discriminator" / Bytes(8),
    "admin" / PUBLIC_KEY_LAYOUT,
    "group_flags" / Int64ul,
)

PRICE_FEED_MESSAGE_LAYOUT = Struct(
    "feed_id" / Bytes(32),
    "price" / Int64sl,
    "conf" / Int64ul,
    "exponent" / Int32sl,
    "publish_time" / Int64sl,
    "prev_publish_time" / Int64sl,
    "ema_price" / Int64sl,
    "ema_conf" / Int64ul,
)

PRICE_UPDATE_V2_LAYOUT = Struct(
    "discriminator" / Bytes(8),
    "write_authority" / PUBLIC_KEY_LAYOUT,
    # borsh enum: Partial { num_signatures } = 0, Full = 1
    "verification_level" / Int8ul,
    "num_signatures" / If(this.verification_level == 0, Int8ul),
    "price_message" / PRICE_FEED_MESSAGE_LAYOUT,
    "posted_slot" / Int64ul,
)

PULL_FEED_RESULT_LAYOUT = Struct(
    "value" / I128,
    "std_dev" / I128,
    # mean, range, min_value, max_value
    Padding(4 * 16),
    "num_samples" / Int8ul,
    "submission_idx" / Int8ul,
    Padding(6),
    "slot" / Int64ul,
    "min_slot" / Int64ul,
    "max_slot" / Int64ul,
)

PULL_FEED_LAYOUT = Struct(
    "discriminator" / Bytes(8),
    # 32 oracle submissions of 64 bytes each
    Padding(32 * 64),
    "authority" / PUBLIC_KEY_LAYOUT,
    "queue" / PUBLIC_KEY_LAYOUT,
    "feed_hash" / Bytes(32),
    "initialized_at" / Int64sl,
    "permissions" / Int64ul,
    "max_variance" / Int64ul,
    "min_responses" / Int32ul,
    "name" / Bytes(32),
    Padding(4),
    "last_update_timestamp" / Int64sl,
    "lut_slot" / Int64ul,
    Padding(32),
    "result" / PULL_FEED_RESULT_LAYOUT,
)

STAKE_DELEGATION_LAYOUT = Struct(
    "voter_pubkey" / PUBLIC_KEY_LAYOUT,
    "stake" / Int64ul,
    "activation_epoch" / Int64ul,
    "deactivation_epoch" / Int64ul,
    "warmup_cooldown_rate" / Float64l,
)

STAKE_ACCOUNT_LAYOUT = Struct(
    # StakeStateV2: 0 uninitialized, 1 initialized, 2 stake, 3 rewards pool
    "state" / Int32ul,
    # meta: rent reserve, authorized staker/withdrawer, lockup
    Padding(8 + 64 + 48),
    "delegation" / STAKE_DELEGATION_LAYOUT,
    "credits_observed" / Int64ul,
)

STAKE_STATE_STAKE = 2


__all__ = [
    "BANK_DISCRIMINATOR",
    "BANK_LAYOUT",
    "GROUP_DISCRIMINATOR",
    "GROUP_LAYOUT",
    "MINT_LAYOUT",
    "PRICE_UPDATE_V2_DISCRIMINATOR",
    "PRICE_UPDATE_V2_LAYOUT",
    "PULL_FEED_DISCRIMINATOR",
    "PULL_FEED_LAYOUT",
    "STAKE_ACCOUNT_LAYOUT",
    "STAKE_STATE_STAKE",
    "account_discriminator",
    "i80f48_to_decimal",
    "switchboard_to_decimal",
]
