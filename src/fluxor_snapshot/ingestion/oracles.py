"""Decode oracle accounts into readings and route them by kind and freshness."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Sequence

from construct import ConstructError
from solders.pubkey import Pubkey

from ..errors import (
    GroupAccountMissingError,
    GroupDecodeError,
    MintAccountMissingError,
    OracleAccountMissingError,
    OracleDecodeError,
)
from ..monitoring.logger import get_logger
from ..store.schemas import (
    ZERO,
    BankRecord,
    GroupDescriptor,
    OracleReading,
    OracleSetup,
    PriceComponents,
    TokenMetadataEntry,
)
from ..utils.constants import (
    DEFAULT_PUBKEY,
    MAX_CONFIDENCE_INTERVAL_RATIO,
    PYTH_PRICE_CONF_INTERVALS,
    STALE_SLACK_SECONDS,
    SWB_PRICE_CONF_INTERVALS,
)
from .layouts import (
    GROUP_DISCRIMINATOR,
    GROUP_LAYOUT,
    PRICE_UPDATE_V2_DISCRIMINATOR,
    PRICE_UPDATE_V2_LAYOUT,
    PULL_FEED_DISCRIMINATOR,
    PULL_FEED_LAYOUT,
    switchboard_to_decimal,
)
from .ledger import AccountData

logger = get_logger(__name__)

_PYTH_CONF = Decimal(PYTH_PRICE_CONF_INTERVALS)
_SWB_CONF = Decimal(SWB_PRICE_CONF_INTERVALS)
_MAX_CONF_RATIO = Decimal(MAX_CONFIDENCE_INTERVAL_RATIO)

# Kinds whose account bytes are decoded; anything else reads as a zero price.
DECODED_SETUPS = frozenset(
    {
        OracleSetup.PYTH_PUSH_ORACLE,
        OracleSetup.SWITCHBOARD_PULL,
        OracleSetup.STAKED_WITH_PYTH_PUSH,
    }
)
PUSH_SETUPS = frozenset({OracleSetup.PYTH_PUSH_ORACLE, OracleSetup.STAKED_WITH_PYTH_PUSH})


@dataclass(slots=True, frozen=True)
class DecodedOracle:
    reading: OracleReading
    feed_hash: Optional[str] = None


@dataclass(slots=True, frozen=True)
class StaleFeed:
    """A pull feed whose on-chain value is too old to use."""

    bank_address: str
    feed_hash: str
    timestamp: int


@dataclass(slots=True)
class RoutedReadings:
    accepted: Dict[str, OracleReading] = field(default_factory=dict)
    stale_pull: Dict[str, StaleFeed] = field(default_factory=dict)
    staked: Dict[str, OracleReading] = field(default_factory=dict)


@dataclass(slots=True)
class LedgerBatch:
    """Mint and oracle data read in one pass."""

    token_data: Dict[str, TokenMetadataEntry]
    oracles: Dict[str, DecodedOracle]


def _cap_confidence(confidence: Decimal, price: Decimal) -> Decimal:
    return max(min(confidence, price * _MAX_CONF_RATIO), ZERO)


def _components(price: Decimal, confidence: Decimal) -> PriceComponents:
    return PriceComponents(
        price=price,
        confidence=confidence,
        lowest_price=max(price - confidence, ZERO),
        highest_price=price + confidence,
    )


def decode_price_update(data: bytes):
    """Return the price message of a push-oracle ``PriceUpdateV2`` account."""

    if data[:8] != PRICE_UPDATE_V2_DISCRIMINATOR:
        raise OracleDecodeError("Account is not a PriceUpdateV2 account")
    try:
        return PRICE_UPDATE_V2_LAYOUT.parse(data).price_message
    except ConstructError as exc:
        raise OracleDecodeError(f"Failed to decode PriceUpdateV2: {exc}") from exc


def parse_pyth_push(data: bytes) -> OracleReading:
    message = decode_price_update(data)
    exponent = int(message.exponent)
    # Prices are floored at zero.
    price = max(Decimal(message.price).scaleb(exponent), ZERO)
    confidence = _cap_confidence(Decimal(message.conf).scaleb(exponent) * _PYTH_CONF, price)
    ema_price = max(Decimal(message.ema_price).scaleb(exponent), ZERO)
    ema_confidence = _cap_confidence(Decimal(message.ema_conf).scaleb(exponent) * _PYTH_CONF, ema_price)
    return OracleReading(
        realtime=_components(price, confidence),
        weighted=_components(ema_price, ema_confidence),
        timestamp=int(message.publish_time),
    )


def parse_switchboard_pull(data: bytes) -> DecodedOracle:
    if data[:8] != PULL_FEED_DISCRIMINATOR:
        raise OracleDecodeError("Account is not a PullFeedAccountData account")
    try:
        parsed = PULL_FEED_LAYOUT.parse(data)
    except ConstructError as exc:
        raise OracleDecodeError(f"Failed to decode PullFeedAccountData: {exc}") from exc
    price = max(switchboard_to_decimal(parsed.result.value), ZERO)
    confidence = _cap_confidence(switchboard_to_decimal(parsed.result.std_dev) * _SWB_CONF, price)
    components = _components(price, confidence)
    return DecodedOracle(
        reading=OracleReading(components, components, int(parsed.last_update_timestamp)),
        feed_hash=bytes(parsed.feed_hash).hex(),
    )


def parse_price_info(setup: OracleSetup, data: Optional[bytes]) -> DecodedOracle:
    """Decode an oracle account according to the bank's oracle setup.

    Unsupported setups produce a zero reading at timestamp 0. A non-finite
    realtime price zeroes both the realtime and the weighted side.
    """

    if setup is OracleSetup.SWITCHBOARD_PULL:
        decoded = parse_switchboard_pull(data or b"")
    elif setup in PUSH_SETUPS:
        decoded = DecodedOracle(parse_pyth_push(data or b""))
    else:
        decoded = DecodedOracle(OracleReading.zero(0))
    return DecodedOracle(decoded.reading.normalized(), decoded.feed_hash)


def is_stale(timestamp: int, max_age: int, now: int, slack: int = STALE_SLACK_SECONDS) -> bool:
    return (now - timestamp) > (max_age + slack)


def classify_readings(
    banks: Mapping[str, BankRecord],
    decoded: Mapping[str, DecodedOracle],
    *,
    now: int,
    slack: int = STALE_SLACK_SECONDS,
) -> RoutedReadings:
    """Split decoded readings into accepted, stale pull and staked groups."""

    routed = RoutedReadings()
    for address, bank in banks.items():
        oracle = decoded[address]
        setup = bank.config.oracle_setup
        if setup is OracleSetup.STAKED_WITH_PYTH_PUSH:
            routed.staked[address] = oracle.reading
            continue
        if (
            setup is OracleSetup.SWITCHBOARD_PULL
            and oracle.feed_hash is not None
            and is_stale(oracle.reading.timestamp, bank.config.oracle_max_age, now, slack)
        ):
            routed.stale_pull[address] = StaleFeed(address, oracle.feed_hash, oracle.reading.timestamp)
            continue
        routed.accepted[address] = oracle.reading
    if routed.stale_pull:
        logger.info("Stale pull feeds detected", extra={"stale_count": len(routed.stale_pull)})
    return routed


def read_group(ledger, group_address: str) -> GroupDescriptor:
    """Read and decode the group account; a missing group aborts the cycle."""

    accounts = ledger.read_accounts([group_address])
    account = accounts[0] if accounts else None
    if account is None:
        raise GroupAccountMissingError(group_address)
    if account.data[:8] != GROUP_DISCRIMINATOR:
        raise GroupDecodeError(group_address, "discriminator mismatch")
    try:
        parsed = GROUP_LAYOUT.parse(account.data)
    except ConstructError as exc:
        raise GroupDecodeError(group_address, str(exc)) from exc
    return GroupDescriptor(
        address=group_address,
        admin=str(Pubkey.from_bytes(bytes(parsed.admin))),
        flags=int(parsed.group_flags),
    )


def read_ledger_batch(
    ledger,
    banks: Mapping[str, BankRecord],
    feed_map: Mapping[str, str],
) -> LedgerBatch:
    """Read every distinct mint, emission mint and oracle account in one ordered batch."""

    mints = list(dict.fromkeys(bank.mint for bank in banks.values()))
    emission_mints = list(
        dict.fromkeys(
            bank.emissions_mint for bank in banks.values() if bank.emissions_mint != DEFAULT_PUBKEY
        )
    )
    oracle_banks = [
        address for address, bank in banks.items() if bank.config.oracle_setup in DECODED_SETUPS
    ]
    oracle_keys = list(dict.fromkeys(feed_map[address] for address in oracle_banks))

    request: List[str] = [*mints, *emission_mints, *oracle_keys]
    accounts = ledger.read_accounts(request)
    by_address: Dict[str, Optional[AccountData]] = dict(zip(request, accounts))

    token_data: Dict[str, TokenMetadataEntry] = {}
    for address, bank in banks.items():
        mint_account = by_address.get(bank.mint)
        if mint_account is None:
            raise MintAccountMissingError(address, bank.mint)
        emission_program: Optional[str] = None
        if bank.emissions_mint != DEFAULT_PUBKEY:
            emission_account = by_address.get(bank.emissions_mint)
            if emission_account is None:
                raise MintAccountMissingError(address, bank.emissions_mint)
            emission_program = emission_account.owner
        token_data[address] = TokenMetadataEntry(
            mint=bank.mint,
            token_program=mint_account.owner,
            fee_bps=0,
            emission_token_program=emission_program,
        )

    oracles: Dict[str, DecodedOracle] = {}
    for address, bank in banks.items():
        setup = bank.config.oracle_setup
        if setup not in DECODED_SETUPS:
            oracles[address] = parse_price_info(setup, None)
            continue
        oracle_key = feed_map[address]
        oracle_account = by_address.get(oracle_key)
        if oracle_account is None:
            raise OracleAccountMissingError(address, oracle_key)
        oracles[address] = parse_price_info(setup, oracle_account.data)

    return LedgerBatch(token_data=token_data, oracles=oracles)


def feed_hashes(stale: Sequence[StaleFeed]) -> List[str]:
    """Distinct feed hashes in first-seen order."""

    return list(dict.fromkeys(feed.feed_hash for feed in stale))


__all__ = [
    "DECODED_SETUPS",
    "DecodedOracle",
    "LedgerBatch",
    "PUSH_SETUPS",
    "RoutedReadings",
    "StaleFeed",
    "classify_readings",
    "decode_price_update",
    "feed_hashes",
    "is_stale",
    "parse_price_info",
    "parse_pyth_push",
    "parse_switchboard_pull",
    "read_group",
    "read_ledger_batch",
]
