"""Errors that abort a refresh cycle before anything is published."""

from __future__ import annotations


class SnapshotError(RuntimeError):
    """Base class for cycle-fatal failures."""


class GroupAccountMissingError(SnapshotError):
    def __init__(self, group_address: str) -> None:
        super().__init__(f"Failed to fetch the on-chain group data for {group_address}")
        self.group_address = group_address


class BankDiscoveryError(SnapshotError):
    """Raised when bank accounts cannot be listed or decoded."""


class MintAccountMissingError(SnapshotError):
    def __init__(self, bank_address: str, mint: str) -> None:
        super().__init__(f"Failed to fetch mint account {mint} for bank {bank_address}")
        self.bank_address = bank_address
        self.mint = mint


class FeedResolutionError(SnapshotError):
    """Raised when a bank's oracle account cannot be determined."""


class OracleAccountMissingError(SnapshotError):
    def __init__(self, bank_address: str, oracle_key: str) -> None:
        super().__init__(f"Failed to fetch price oracle account {oracle_key} for bank {bank_address}")
        self.bank_address = bank_address
        self.oracle_key = oracle_key


class GroupDecodeError(SnapshotError):
    def __init__(self, group_address: str, reason: str) -> None:
        super().__init__(f"Account {group_address} is not a lending group: {reason}")
        self.group_address = group_address


class OracleDecodeError(SnapshotError):
    """Raised when an oracle account's bytes do not match its configured kind."""


class SnapshotInvariantError(SnapshotError):
    """Raised when composed maps disagree on the set of banks."""


__all__ = [
    "BankDiscoveryError",
    "FeedResolutionError",
    "GroupAccountMissingError",
    "GroupDecodeError",
    "MintAccountMissingError",
    "OracleAccountMissingError",
    "OracleDecodeError",
    "SnapshotError",
    "SnapshotInvariantError",
]
