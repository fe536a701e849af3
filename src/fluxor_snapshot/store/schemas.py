"""Data models shared by the ingestion, pipeline and cache layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional

ZERO = Decimal(0)


class OracleSetup(IntEnum):
    """Oracle kinds a bank can be configured with."""

    NONE = 0
    PYTH_LEGACY = 1
    SWITCHBOARD_V2 = 2
    PYTH_PUSH_ORACLE = 3
    SWITCHBOARD_PULL = 4
    STAKED_WITH_PYTH_PUSH = 5

    @classmethod
    def parse(cls, value: int) -> "OracleSetup":
        try:
            return cls(value)
        except ValueError:
            return cls.NONE

    @property
    def label(self) -> str:
        return _ORACLE_SETUP_LABELS[self]


_ORACLE_SETUP_LABELS = {
    OracleSetup.NONE: "None",
    OracleSetup.PYTH_LEGACY: "PythLegacy",
    OracleSetup.SWITCHBOARD_V2: "SwitchboardV2",
    OracleSetup.PYTH_PUSH_ORACLE: "PythPushOracle",
    OracleSetup.SWITCHBOARD_PULL: "SwitchboardPull",
    OracleSetup.STAKED_WITH_PYTH_PUSH: "StakedWithPythPush",
}


class OperationalState(IntEnum):
    PAUSED = 0
    OPERATIONAL = 1
    REDUCE_ONLY = 2


class RiskTier(IntEnum):
    COLLATERAL = 0
    ISOLATED = 1


@dataclass(slots=True, frozen=True)
class PriceComponents:
    """One side of an oracle price with its confidence band."""

    price: Decimal
    confidence: Decimal
    lowest_price: Decimal
    highest_price: Decimal

    @classmethod
    def zero(cls) -> "PriceComponents":
        return cls(ZERO, ZERO, ZERO, ZERO)

    @classmethod
    def flat(cls, price: Decimal) -> "PriceComponents":
        """Components for a point price with no confidence interval."""

        return cls(price, ZERO, price, price)

    def is_finite(self) -> bool:
        return self.price.is_finite()

    def scaled(self, numerator: int, denominator: int) -> "PriceComponents":
        """Rescale the price band, leaving the confidence untouched.

        A zero denominator yields all-zero components.
        """

        if denominator == 0:
            return PriceComponents.zero()
        return PriceComponents(
            price=self.price * numerator / denominator,
            confidence=self.confidence,
            lowest_price=self.lowest_price * numerator / denominator,
            highest_price=self.highest_price * numerator / denominator,
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "price": str(self.price),
            "confidence": str(self.confidence),
            "lowestPrice": str(self.lowest_price),
            "highestPrice": str(self.highest_price),
        }


@dataclass(slots=True, frozen=True)
class OracleReading:
    """Realtime and weighted price for one bank at one timestamp."""

    realtime: PriceComponents
    weighted: PriceComponents
    timestamp: int

    @classmethod
    def zero(cls, timestamp: int) -> "OracleReading":
        return cls(PriceComponents.zero(), PriceComponents.zero(), timestamp)

    @classmethod
    def flat(cls, price: Decimal, timestamp: int) -> "OracleReading":
        components = PriceComponents.flat(price)
        return cls(components, components, timestamp)

    def normalized(self) -> "OracleReading":
        """Zero out both sides when the realtime price is not a finite number."""

        if self.realtime.is_finite():
            return self
        return OracleReading.zero(self.timestamp)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "priceRealtime": self.realtime.to_dict(),
            "priceWeighted": self.weighted.to_dict(),
            "timestamp": str(self.timestamp),
        }


@dataclass(slots=True, frozen=True)
class BankConfig:
    """Risk and oracle configuration embedded in a bank account."""

    asset_weight_init: Decimal
    asset_weight_maint: Decimal
    liability_weight_init: Decimal
    liability_weight_maint: Decimal
    deposit_limit: int
    borrow_limit: int
    operational_state: OperationalState
    oracle_setup: OracleSetup
    oracle_keys: List[str]
    oracle_max_age: int
    risk_tier: RiskTier
    total_asset_value_init_limit: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assetWeightInit": str(self.asset_weight_init),
            "assetWeightMaint": str(self.asset_weight_maint),
            "liabilityWeightInit": str(self.liability_weight_init),
            "liabilityWeightMaint": str(self.liability_weight_maint),
            "depositLimit": str(self.deposit_limit),
            "borrowLimit": str(self.borrow_limit),
            "operationalState": self.operational_state.name.title().replace("_", ""),
            "oracleSetup": self.oracle_setup.label,
            "oracleKeys": list(self.oracle_keys),
            "oracleMaxAge": self.oracle_max_age,
            "riskTier": self.risk_tier.name.title(),
            "totalAssetValueInitLimit": str(self.total_asset_value_init_limit),
        }


@dataclass(slots=True, frozen=True)
class BankRecord:
    """Decoded bank account."""

    address: str
    mint: str
    mint_decimals: int
    group: str
    config: BankConfig
    emissions_mint: str
    asset_share_value: Decimal
    liability_share_value: Decimal
    total_asset_shares: Decimal
    total_liability_shares: Decimal
    last_update: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "mint": self.mint,
            "mintDecimals": self.mint_decimals,
            "group": self.group,
            "config": self.config.to_dict(),
            "emissionsMint": self.emissions_mint,
            "assetShareValue": str(self.asset_share_value),
            "liabilityShareValue": str(self.liability_share_value),
            "totalAssetShares": str(self.total_asset_shares),
            "totalLiabilityShares": str(self.total_liability_shares),
            "lastUpdate": self.last_update,
        }


@dataclass(slots=True, frozen=True)
class GroupDescriptor:
    address: str
    admin: str
    flags: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"address": self.address, "admin": self.admin, "groupFlags": self.flags}


@dataclass(slots=True, frozen=True)
class TokenMetadataEntry:
    """Token program details for a bank's mint."""

    mint: str
    token_program: str
    fee_bps: int = 0
    emission_token_program: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mint": self.mint,
            "tokenProgram": self.token_program,
            "feeBps": self.fee_bps,
            "emissionTokenProgram": self.emission_token_program,
        }


@dataclass(slots=True, frozen=True)
class GroupSnapshot:
    """Everything published for one group in one refresh cycle."""

    group: GroupDescriptor
    banks: Dict[str, BankRecord]
    prices: Dict[str, OracleReading]
    token_data: Dict[str, TokenMetadataEntry]
    feed_map: Dict[str, str]


class AdjustmentStatus(str, Enum):
    ADJUSTED = "adjusted"
    SKIPPED = "skipped"


@dataclass(slots=True, frozen=True)
class StakedAdjustment:
    """Outcome of rescaling one staked-collateral bank's price."""

    bank_address: str
    status: AdjustmentStatus
    reading: OracleReading
    stake: Optional[int] = None
    supply: Optional[int] = None
    reason: Optional[str] = None

    @property
    def adjusted(self) -> bool:
        return self.status is AdjustmentStatus.ADJUSTED


class ResolutionSource(str, Enum):
    PRIMARY = "primary"
    FALLBACK = "fallback"
    ASSET_OVERRIDE = "asset_override"
    UNRESOLVED = "unresolved"


@dataclass(slots=True)
class FeedResolution:
    """How a stale pull feed was priced."""

    feed_hash: str
    source: ResolutionSource
    samples: List[Decimal] = field(default_factory=list)
    price: Optional[Decimal] = None


__all__ = [
    "AdjustmentStatus",
    "BankConfig",
    "BankRecord",
    "FeedResolution",
    "GroupDescriptor",
    "GroupSnapshot",
    "OperationalState",
    "OracleReading",
    "OracleSetup",
    "PriceComponents",
    "ResolutionSource",
    "RiskTier",
    "StakedAdjustment",
    "TokenMetadataEntry",
    "ZERO",
]
