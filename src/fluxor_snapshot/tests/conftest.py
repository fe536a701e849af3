from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import pytest
import requests
from solders.pubkey import Pubkey

from fluxor_snapshot.config.settings import AppConfig, get_app_config
from fluxor_snapshot.ingestion.layouts import (
    BANK_DISCRIMINATOR,
    BANK_LAYOUT,
    GROUP_DISCRIMINATOR,
    GROUP_LAYOUT,
    MINT_LAYOUT,
    PRICE_UPDATE_V2_DISCRIMINATOR,
    PRICE_UPDATE_V2_LAYOUT,
    PULL_FEED_DISCRIMINATOR,
    PULL_FEED_LAYOUT,
    STAKE_ACCOUNT_LAYOUT,
)
from fluxor_snapshot.ingestion.ledger import AccountData
from fluxor_snapshot.monitoring.metrics import METRICS
from fluxor_snapshot.pipeline.context import PipelineContext
from fluxor_snapshot.store.schemas import OracleSetup
from fluxor_snapshot.utils.constants import MARGINFI_PROGRAM_ID

TOKEN_PROGRAM = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PS1DjSLcnjb9PX"
PUSH_ORACLE_OWNER = "rec5EKMGg6MxZYaMdyBfgwp4d5rB9T1VQH5pJv5LtFJ"
SWITCHBOARD_OWNER = "SBondMDrcV3K4kxZR1HNVT7osZxAHVHgYXL5Ze1oMUv"
STAKE_PROGRAM = "Stake11111111111111111111111111111111111111"
DEFAULT_KEY = bytes(32)

I80F48_ONE = 2**48


def new_address() -> str:
    return str(Pubkey.new_unique())


def _key_bytes(address: Optional[str]) -> bytes:
    return bytes(Pubkey.from_string(address)) if address else DEFAULT_KEY


class FakeLedger:
    """In-memory ledger keyed by address."""

    def __init__(self) -> None:
        self.accounts: Dict[str, AccountData] = {}
        self.read_calls: List[List[str]] = []
        self.scan_calls: List[Tuple[str, Tuple[Tuple[int, str], ...], bool]] = []
        self.fail_reads = False
        self.fail_scans = False

    def put(self, address: str, data: bytes, owner: str = MARGINFI_PROGRAM_ID) -> str:
        self.accounts[address] = AccountData(address=address, owner=owner, data=data)
        return address

    def read_accounts(self, addresses: Sequence[str]) -> List[Optional[AccountData]]:
        addresses = list(addresses)
        self.read_calls.append(addresses)
        if self.fail_reads:
            raise requests.ConnectionError("rpc unavailable")
        return [self.accounts.get(address) for address in addresses]

    def scan_accounts(self, program_id, memcmp=(), *, data_size=None, keys_only=False):
        self.scan_calls.append((program_id, tuple(memcmp), keys_only))
        if self.fail_scans:
            raise requests.ConnectionError("rpc unavailable")
        matches = []
        for account in self.accounts.values():
            if account.owner != program_id:
                continue
            if all(
                account.data[offset : offset + 32] == bytes(Pubkey.from_string(value))
                for offset, value in memcmp
            ):
                matches.append(
                    AccountData(account.address, account.owner, b"" if keys_only else account.data)
                )
        return matches


class FakeResponse:
    def __init__(self, payload: Any, status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self) -> Any:
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakeSession:
    """Routes GET requests by URL prefix to canned responses or exceptions."""

    def __init__(self) -> None:
        self.routes: List[Tuple[str, Any]] = []
        self.calls: List[Dict[str, Any]] = []

    def route(self, prefix: str, response: Any) -> None:
        self.routes.append((prefix, response))

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"url": url, **kwargs})
        for prefix, response in self.routes:
            if url.startswith(prefix):
                if isinstance(response, Exception):
                    raise response
                if callable(response):
                    return response(url, **kwargs)
                if isinstance(response, FakeResponse):
                    return response
                return FakeResponse(response)
        raise requests.ConnectionError(f"no route for {url}")

    def urls(self) -> List[str]:
        return [call["url"] for call in self.calls]


class FakeCache:
    def __init__(self) -> None:
        self.hashes: Dict[str, Dict[str, str]] = {}
        self.hset_calls = 0
        self.fail = False

    def hset(self, key: str, mapping) -> int:
        if self.fail:
            raise ConnectionError("redis unavailable")
        self.hset_calls += 1
        self.hashes.setdefault(key, {}).update(mapping)
        return len(mapping)

    def hgetall(self, key: str) -> Dict[bytes, bytes]:
        return {name.encode(): value.encode() for name, value in self.hashes.get(key, {}).items()}


class FakeAssetPrices:
    def __init__(self, prices: Optional[Dict[str, Decimal]] = None) -> None:
        self.prices = dict(prices or {})
        self.calls: List[str] = []

    def fetch_asset_price(self, asset_id: str) -> Optional[Decimal]:
        self.calls.append(asset_id)
        return self.prices.get(asset_id)


@dataclass
class FakeStakeMetadata:
    entries: Dict[str, Any] = field(default_factory=dict)
    loads: int = 0

    def load(self) -> Dict[str, Any]:
        self.loads += 1
        return dict(self.entries)


def build_bank(
    *,
    group: str,
    mint: str,
    oracle_setup: OracleSetup = OracleSetup.PYTH_PUSH_ORACLE,
    oracle_key: Optional[str] = None,
    oracle_max_age: int = 60,
    mint_decimals: int = 6,
    emissions_mint: Optional[str] = None,
    discriminator: bytes = BANK_DISCRIMINATOR,
) -> bytes:
    keys = [_key_bytes(oracle_key)] + [DEFAULT_KEY] * 4
    return BANK_LAYOUT.build(
        {
            "discriminator": discriminator,
            "mint": _key_bytes(mint),
            "mint_decimals": mint_decimals,
            "group": _key_bytes(group),
            "asset_share_value": I80F48_ONE,
            "liability_share_value": I80F48_ONE,
            "total_liability_shares": 0,
            "total_asset_shares": 5 * I80F48_ONE,
            "last_update": 1_700_000_000,
            "config": {
                "asset_weight_init": int(0.8 * I80F48_ONE),
                "asset_weight_maint": int(0.9 * I80F48_ONE),
                "liability_weight_init": int(1.25 * I80F48_ONE),
                "liability_weight_maint": int(1.1 * I80F48_ONE),
                "deposit_limit": 1_000_000,
                "operational_state": 1,
                "oracle_setup": int(oracle_setup),
                "oracle_keys": keys,
                "borrow_limit": 500_000,
                "risk_tier": 0,
                "asset_tag": 0,
                "total_asset_value_init_limit": 0,
                "oracle_max_age": oracle_max_age,
            },
            "flags": 0,
            "emissions_rate": 0,
            "emissions_remaining": 0,
            "emissions_mint": _key_bytes(emissions_mint),
        }
    )


def build_group(admin: str) -> bytes:
    return GROUP_LAYOUT.build(
        {"discriminator": GROUP_DISCRIMINATOR, "admin": _key_bytes(admin), "group_flags": 0}
    )


def build_price_update(
    *,
    price: int,
    conf: int,
    exponent: int = -8,
    publish_time: int,
    ema_price: Optional[int] = None,
    ema_conf: Optional[int] = None,
    feed_id: bytes = DEFAULT_KEY,
    verification_level: int = 1,
) -> bytes:
    return PRICE_UPDATE_V2_LAYOUT.build(
        {
            "discriminator": PRICE_UPDATE_V2_DISCRIMINATOR,
            "write_authority": DEFAULT_KEY,
            "verification_level": verification_level,
            "num_signatures": 3 if verification_level == 0 else None,
            "price_message": {
                "feed_id": feed_id,
                "price": price,
                "conf": conf,
                "exponent": exponent,
                "publish_time": publish_time,
                "prev_publish_time": publish_time - 1,
                "ema_price": price if ema_price is None else ema_price,
                "ema_conf": conf if ema_conf is None else ema_conf,
            },
            "posted_slot": 1,
        }
    )


def build_pull_feed(*, value: Decimal, std_dev: Decimal = Decimal(0), feed_hash: str, timestamp: int) -> bytes:
    scale = Decimal(10**18)
    return PULL_FEED_LAYOUT.build(
        {
            "discriminator": PULL_FEED_DISCRIMINATOR,
            "authority": DEFAULT_KEY,
            "queue": DEFAULT_KEY,
            "feed_hash": bytes.fromhex(feed_hash),
            "initialized_at": 0,
            "permissions": 0,
            "max_variance": 0,
            "min_responses": 1,
            "name": bytes(32),
            "last_update_timestamp": timestamp,
            "lut_slot": 0,
            "result": {
                "value": int(value * scale),
                "std_dev": int(std_dev * scale),
                "num_samples": 3,
                "submission_idx": 0,
                "slot": 1,
                "min_slot": 1,
                "max_slot": 1,
            },
        }
    )


def build_stake_account(*, stake: int, state: int = 2, voter: Optional[str] = None) -> bytes:
    return STAKE_ACCOUNT_LAYOUT.build(
        {
            "state": state,
            "delegation": {
                "voter_pubkey": _key_bytes(voter),
                "stake": stake,
                "activation_epoch": 500,
                "deactivation_epoch": 2**64 - 1,
                "warmup_cooldown_rate": 0.25,
            },
            "credits_observed": 0,
        }
    )


def build_mint(*, supply: int, decimals: int = 9) -> bytes:
    return MINT_LAYOUT.build(
        {
            "mint_authority_option": 0,
            "mint_authority": DEFAULT_KEY,
            "supply": supply,
            "decimals": decimals,
            "is_initialized": 1,
            "freeze_authority_option": 0,
            "freeze_authority": DEFAULT_KEY,
        }
    )


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setenv("APP_CONFIG_FILE", str(tmp_path / "missing.toml"))
    for name in ("HELIUS_API_KEY", "HELIUS_RPC_URL", "SNAPSHOT_PROFILE"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    get_app_config.cache_clear()
    METRICS.reset()
    yield
    METRICS.reset()
    get_app_config.cache_clear()


@pytest.fixture
def chain() -> SimpleNamespace:
    """Account builders sharing the layouts used for decoding."""

    return SimpleNamespace(
        address=new_address,
        bank=build_bank,
        group=build_group,
        price_update=build_price_update,
        pull_feed=build_pull_feed,
        stake_account=build_stake_account,
        mint=build_mint,
        token_program=TOKEN_PROGRAM,
        token_2022_program=TOKEN_2022_PROGRAM,
        push_oracle_owner=PUSH_ORACLE_OWNER,
        switchboard_owner=SWITCHBOARD_OWNER,
        stake_program=STAKE_PROGRAM,
    )


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def cache() -> FakeCache:
    return FakeCache()


@pytest.fixture
def asset_prices() -> FakeAssetPrices:
    return FakeAssetPrices()


@pytest.fixture
def stake_metadata() -> FakeStakeMetadata:
    return FakeStakeMetadata()


@pytest.fixture
def clock() -> SimpleNamespace:
    return SimpleNamespace(now=1_700_000_000)


@pytest.fixture
def make_context(ledger, session, cache, asset_prices, stake_metadata, clock) -> Callable[..., PipelineContext]:
    def factory(**overrides: Any) -> PipelineContext:
        config = AppConfig(**overrides)
        return PipelineContext(
            config=config,
            ledger=ledger,  # type: ignore[arg-type]
            http=session,  # type: ignore[arg-type]
            cache=cache,
            stake_metadata=stake_metadata,  # type: ignore[arg-type]
            asset_prices=asset_prices,  # type: ignore[arg-type]
            clock=lambda: clock.now,
        )

    return factory
