"""Bank discovery: list and decode the banks belonging to a lending group."""

from __future__ import annotations

from typing import Dict, Iterable, Optional, Protocol, Sequence

from construct import ConstructError
from solders.pubkey import Pubkey

from ..errors import BankDiscoveryError
from ..monitoring.logger import get_logger
from ..store.schemas import BankConfig, BankRecord, OperationalState, OracleSetup, RiskTier
from ..utils.constants import BANK_GROUP_OFFSET
from .layouts import BANK_DISCRIMINATOR, BANK_LAYOUT, i80f48_to_decimal
from .ledger import AccountData

logger = get_logger(__name__)


class LedgerReader(Protocol):
    def read_accounts(self, addresses: Sequence[str]) -> list[Optional[AccountData]]:
        ...

    def scan_accounts(self, program_id: str, memcmp=(), *, data_size=None, keys_only=False) -> list[AccountData]:
        ...


def _pubkey(raw: bytes) -> str:
    return str(Pubkey.from_bytes(bytes(raw)))


def decode_bank(address: str, data: bytes) -> BankRecord:
    """Decode raw bank account bytes into a :class:`BankRecord`."""

    if data[:8] != BANK_DISCRIMINATOR:
        raise BankDiscoveryError(f"Account {address} is not a bank account")
    try:
        parsed = BANK_LAYOUT.parse(data)
        raw_config = parsed.config
        operational_state = OperationalState(raw_config.operational_state)
        risk_tier = RiskTier(raw_config.risk_tier)
    except (ConstructError, ValueError) as exc:
        raise BankDiscoveryError(f"Failed to decode bank {address}: {exc}") from exc

    config = BankConfig(
        asset_weight_init=i80f48_to_decimal(raw_config.asset_weight_init),
        asset_weight_maint=i80f48_to_decimal(raw_config.asset_weight_maint),
        liability_weight_init=i80f48_to_decimal(raw_config.liability_weight_init),
        liability_weight_maint=i80f48_to_decimal(raw_config.liability_weight_maint),
        deposit_limit=int(raw_config.deposit_limit),
        borrow_limit=int(raw_config.borrow_limit),
        operational_state=operational_state,
        oracle_setup=OracleSetup.parse(raw_config.oracle_setup),
        oracle_keys=[_pubkey(key) for key in raw_config.oracle_keys],
        oracle_max_age=int(raw_config.oracle_max_age),
        risk_tier=risk_tier,
        total_asset_value_init_limit=int(raw_config.total_asset_value_init_limit),
    )
    return BankRecord(
        address=address,
        mint=_pubkey(parsed.mint),
        mint_decimals=int(parsed.mint_decimals),
        group=_pubkey(parsed.group),
        config=config,
        emissions_mint=_pubkey(parsed.emissions_mint),
        asset_share_value=i80f48_to_decimal(parsed.asset_share_value),
        liability_share_value=i80f48_to_decimal(parsed.liability_share_value),
        total_asset_shares=i80f48_to_decimal(parsed.total_asset_shares),
        total_liability_shares=i80f48_to_decimal(parsed.total_liability_shares),
        last_update=int(parsed.last_update),
    )


def list_group_bank_addresses(ledger: LedgerReader, program_id: str, group_address: str) -> list[str]:
    """Addresses of every bank whose group field matches ``group_address``."""

    try:
        accounts = ledger.scan_accounts(
            program_id,
            [(BANK_GROUP_OFFSET, group_address)],
            keys_only=True,
        )
    except Exception as exc:  # noqa: BLE001
        raise BankDiscoveryError(f"Bank scan failed for group {group_address}: {exc}") from exc
    return [account.address for account in accounts]


def discover_banks(
    ledger: LedgerReader,
    program_id: str,
    group_address: str,
    bank_addresses: Optional[Iterable[str]] = None,
) -> Dict[str, BankRecord]:
    """Return the group's banks keyed by address, in discovery order.

    With an explicit address list only those accounts are read and any that do not
    exist are dropped. Without one, the lending program is scanned for accounts
    whose group field equals ``group_address``.
    """

    explicit = list(dict.fromkeys(bank_addresses or []))
    try:
        if explicit:
            fetched = ledger.read_accounts(explicit)
            accounts = [account for account in fetched if account is not None]
            if len(accounts) < len(explicit):
                logger.debug(
                    "Dropped %d missing bank accounts", len(explicit) - len(accounts)
                )
        else:
            accounts = ledger.scan_accounts(program_id, [(BANK_GROUP_OFFSET, group_address)])
    except Exception as exc:  # noqa: BLE001
        raise BankDiscoveryError(f"Bank discovery failed for group {group_address}: {exc}") from exc

    banks: Dict[str, BankRecord] = {}
    for account in accounts:
        banks[account.address] = decode_bank(account.address, account.data)
    logger.info(
        "Discovered banks",
        extra={"group": group_address, "bank_count": len(banks), "explicit": bool(explicit)},
    )
    return banks


__all__ = ["LedgerReader", "decode_bank", "discover_banks", "list_group_bank_addresses"]
