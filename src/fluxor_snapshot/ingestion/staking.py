"""Staked-collateral price adjustment for single-validator stake pool banks."""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple

import requests
from cachetools import TTLCache
from construct import ConstructError
from solders.pubkey import Pubkey
from tenacity import RetryError, retry, stop_after_attempt, wait_exponential

from ..config.settings import StakingConfig, get_app_config
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS
from ..store.schemas import AdjustmentStatus, OracleReading, StakedAdjustment
from ..utils.constants import LAMPORTS_PER_SOL, SINGLE_POOL_PROGRAM_ID
from .layouts import MINT_LAYOUT, STAKE_ACCOUNT_LAYOUT, STAKE_STATE_STAKE

logger = get_logger(__name__)

DEFAULT_HEADERS = {"User-Agent": "fluxor-snapshot/1.0", "Accept": "application/json"}


@dataclass(slots=True, frozen=True)
class StakePoolMetadata:
    bank_address: str
    validator_vote_account: str
    token_address: Optional[str] = None


class StakeMetadataLoader:
    """Fetches the bank -> stake pool metadata document, cached for a short TTL."""

    def __init__(
        self,
        config: Optional[StakingConfig] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._config = config or get_app_config().staking
        self._session = session or requests.Session()
        self._cache: TTLCache[str, Dict[str, StakePoolMetadata]] = TTLCache(
            maxsize=1, ttl=max(self._config.metadata_ttl_seconds, 1)
        )

    @retry(wait=wait_exponential(multiplier=0.5, min=0.5, max=4), stop=stop_after_attempt(3))
    def _get(self) -> object:
        response = self._session.get(
            str(self._config.metadata_url),
            params={"time": int(time.time() * 1000)},
            headers=DEFAULT_HEADERS,
            timeout=self._config.http_timeout,
        )
        response.raise_for_status()
        return response.json()

    def _normalize(self, payload: object) -> Dict[str, StakePoolMetadata]:
        if isinstance(payload, dict):
            entries = [dict(value, bankAddress=key) for key, value in payload.items() if isinstance(value, dict)]
        elif isinstance(payload, list):
            entries = [item for item in payload if isinstance(item, dict)]
        else:
            entries = []
        metadata: Dict[str, StakePoolMetadata] = {}
        for item in entries:
            bank_address = item.get("bankAddress")
            vote_account = item.get("validatorVoteAccount")
            if not bank_address or not vote_account:
                continue
            metadata[str(bank_address)] = StakePoolMetadata(
                bank_address=str(bank_address),
                validator_vote_account=str(vote_account),
                token_address=item.get("tokenAddress") or None,
            )
        return metadata

    def load(self) -> Dict[str, StakePoolMetadata]:
        """Return metadata keyed by bank address; empty when the source is unavailable."""

        if self._config.metadata_ttl_seconds > 0 and "metadata" in self._cache:
            return self._cache["metadata"]
        try:
            payload = self._get()
        except (RetryError, requests.RequestException, ValueError) as exc:
            logger.warning("Failed to load stake pool metadata: %s", exc)
            return {}
        metadata = self._normalize(payload)
        self._cache["metadata"] = metadata
        return metadata


def find_pool_address(vote_account: str) -> str:
    address, _ = Pubkey.find_program_address(
        [b"pool", bytes(Pubkey.from_string(vote_account))],
        Pubkey.from_string(SINGLE_POOL_PROGRAM_ID),
    )
    return str(address)


def find_pool_stake_address(pool_address: str) -> str:
    address, _ = Pubkey.find_program_address(
        [b"stake", bytes(Pubkey.from_string(pool_address))],
        Pubkey.from_string(SINGLE_POOL_PROGRAM_ID),
    )
    return str(address)


def find_pool_mint_address(pool_address: str) -> str:
    address, _ = Pubkey.find_program_address(
        [b"mint", bytes(Pubkey.from_string(pool_address))],
        Pubkey.from_string(SINGLE_POOL_PROGRAM_ID),
    )
    return str(address)


def pool_accounts(metadata: StakePoolMetadata) -> Tuple[str, str]:
    """Return the (stake account, LST mint) pair for a bank's stake pool."""

    pool = find_pool_address(metadata.validator_vote_account)
    mint = metadata.token_address or find_pool_mint_address(pool)
    return find_pool_stake_address(pool), mint


def adjust_reading(reading: OracleReading, delegated_stake: int, supply: int) -> OracleReading:
    """Scale price, lowest and highest by ``(stake - 1 SOL) / supply``.

    Zero when supply is zero or the delegated stake does not exceed 1 SOL.
    """

    numerator = max(delegated_stake - LAMPORTS_PER_SOL, 0)
    return OracleReading(
        realtime=reading.realtime.scaled(numerator, supply),
        weighted=reading.weighted.scaled(numerator, supply),
        timestamp=reading.timestamp,
    )


def _skipped(bank_address: str, reading: OracleReading, reason: str) -> StakedAdjustment:
    return StakedAdjustment(
        bank_address=bank_address,
        status=AdjustmentStatus.SKIPPED,
        reading=reading,
        reason=reason,
    )


def _adjust_one(
    ledger, bank_address: str, reading: OracleReading, metadata: StakePoolMetadata
) -> StakedAdjustment:
    try:
        stake_address, mint_address = pool_accounts(metadata)
        stake_account, mint_account = ledger.read_accounts([stake_address, mint_address])
        if stake_account is None:
            return _skipped(bank_address, reading, f"stake account {stake_address} not found")
        if mint_account is None:
            return _skipped(bank_address, reading, f"LST mint {mint_address} not found")
        stake = STAKE_ACCOUNT_LAYOUT.parse(stake_account.data)
        if stake.state != STAKE_STATE_STAKE:
            return _skipped(bank_address, reading, f"stake account {stake_address} is not delegated")
        delegated = int(stake.delegation.stake)
        supply = int(MINT_LAYOUT.parse(mint_account.data).supply)
    except (ConstructError, ValueError) as exc:
        return _skipped(bank_address, reading, f"decode failed: {exc}")
    except Exception as exc:  # noqa: BLE001
        return _skipped(bank_address, reading, f"read failed: {exc}")
    return StakedAdjustment(
        bank_address=bank_address,
        status=AdjustmentStatus.ADJUSTED,
        reading=adjust_reading(reading, delegated, supply),
        stake=delegated,
        supply=supply,
    )


def adjust_staked_prices(
    context, staked: Mapping[str, OracleReading]
) -> Dict[str, StakedAdjustment]:
    """Adjust every staked-collateral reading; failures keep the raw reading."""

    if not staked:
        return {}
    metadata = context.stake_metadata.load()
    results: Dict[str, StakedAdjustment] = {}
    pending = []
    for bank_address, reading in staked.items():
        bank_metadata = metadata.get(bank_address)
        if bank_metadata is None:
            results[bank_address] = _skipped(bank_address, reading, "no stake pool metadata")
        else:
            pending.append((bank_address, reading, bank_metadata))

    def worker(item: Tuple[str, OracleReading, StakePoolMetadata]) -> StakedAdjustment:
        return _adjust_one(context.ledger, *item)

    workers = max(1, min(context.config.staking.max_workers, len(pending)))
    if workers > 1:
        with ThreadPoolExecutor(max_workers=workers) as executor:
            outcomes = list(executor.map(worker, pending))
    else:
        outcomes = [worker(item) for item in pending]
    for outcome in outcomes:
        results[outcome.bank_address] = outcome

    for outcome in results.values():
        if outcome.adjusted:
            METRICS.increment("staking.adjusted")
            logger.debug(
                "Adjusted staked collateral price",
                extra={"bank": outcome.bank_address, "stake": outcome.stake, "supply": outcome.supply},
            )
        else:
            METRICS.increment("staking.skipped")
            logger.warning(
                "Staked collateral adjustment skipped for %s: %s",
                outcome.bank_address,
                outcome.reason,
            )
    return {address: results[address] for address in staked}


__all__ = [
    "StakeMetadataLoader",
    "StakePoolMetadata",
    "adjust_reading",
    "adjust_staked_prices",
    "find_pool_address",
    "find_pool_mint_address",
    "find_pool_stake_address",
    "pool_accounts",
]
