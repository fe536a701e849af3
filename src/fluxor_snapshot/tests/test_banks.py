from __future__ import annotations

from decimal import Decimal

import pytest
from solders.pubkey import Pubkey

from fluxor_snapshot.errors import BankDiscoveryError
from fluxor_snapshot.ingestion.banks import decode_bank, discover_banks
from fluxor_snapshot.store.schemas import OperationalState, OracleSetup
from fluxor_snapshot.utils.constants import BANK_GROUP_OFFSET, DEFAULT_PUBKEY, MARGINFI_PROGRAM_ID


def test_decode_bank_reads_config_and_group(chain) -> None:
    group, mint, oracle = chain.address(), chain.address(), chain.address()
    data = chain.bank(
        group=group,
        mint=mint,
        oracle_setup=OracleSetup.SWITCHBOARD_PULL,
        oracle_key=oracle,
        oracle_max_age=45,
        mint_decimals=9,
    )

    bank = decode_bank("BankAddress", data)

    assert bank.group == group
    assert bank.mint == mint
    assert bank.mint_decimals == 9
    assert bank.emissions_mint == DEFAULT_PUBKEY
    assert bank.config.oracle_setup is OracleSetup.SWITCHBOARD_PULL
    assert bank.config.oracle_keys[0] == oracle
    assert bank.config.oracle_keys[1:] == [DEFAULT_PUBKEY] * 4
    assert bank.config.oracle_max_age == 45
    assert bank.config.operational_state is OperationalState.OPERATIONAL
    assert bank.config.liability_weight_init == Decimal("1.25")
    assert bank.asset_share_value == Decimal(1)
    assert bank.total_asset_shares == Decimal(5)
    # The group field sits right after the discriminator, mint and decimals.
    assert data[BANK_GROUP_OFFSET : BANK_GROUP_OFFSET + 32] == bytes(Pubkey.from_string(group))


def test_decode_bank_rejects_foreign_discriminator(chain) -> None:
    data = chain.bank(group=chain.address(), mint=chain.address(), discriminator=b"\x00" * 8)

    with pytest.raises(BankDiscoveryError):
        decode_bank("NotABank", data)


def test_decode_bank_rejects_truncated_account(chain) -> None:
    data = chain.bank(group=chain.address(), mint=chain.address())

    with pytest.raises(BankDiscoveryError):
        decode_bank("Truncated", data[:200])


def test_discover_banks_scans_by_group(chain, ledger) -> None:
    group, other_group = chain.address(), chain.address()
    first = ledger.put(chain.address(), chain.bank(group=group, mint=chain.address()))
    second = ledger.put(chain.address(), chain.bank(group=group, mint=chain.address()))
    ledger.put(chain.address(), chain.bank(group=other_group, mint=chain.address()))

    banks = discover_banks(ledger, MARGINFI_PROGRAM_ID, group)

    assert list(banks) == [first, second]
    program, memcmp, keys_only = ledger.scan_calls[0]
    assert program == MARGINFI_PROGRAM_ID
    assert memcmp == ((BANK_GROUP_OFFSET, group),)
    assert keys_only is False


def test_discover_banks_explicit_list_drops_missing(chain, ledger) -> None:
    group = chain.address()
    present = ledger.put(chain.address(), chain.bank(group=group, mint=chain.address()))
    missing = chain.address()

    banks = discover_banks(ledger, MARGINFI_PROGRAM_ID, group, [missing, present, present])

    assert list(banks) == [present]
    assert ledger.scan_calls == []
    assert ledger.read_calls == [[missing, present]]


def test_discover_banks_wraps_read_failures(chain, ledger) -> None:
    ledger.fail_scans = True

    with pytest.raises(BankDiscoveryError):
        discover_banks(ledger, MARGINFI_PROGRAM_ID, chain.address())
