"""Ledger RPC access with endpoint fallback and chunked batch reads."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from solana.rpc.api import Client
from solana.rpc.commitment import Commitment
from solana.rpc.types import DataSliceOpts, MemcmpOpts
from solders.pubkey import Pubkey

from ..config.settings import RPCConfig, get_app_config
from ..monitoring.logger import get_logger


@dataclass(slots=True, frozen=True)
class AccountData:
    """Raw account contents returned by the ledger."""

    address: str
    owner: str
    data: bytes


class LedgerClient:
    """Reads raw accounts from Solana RPC, trying each configured endpoint in turn."""

    def __init__(self, config: Optional[RPCConfig] = None) -> None:
        self._config = config or get_app_config().rpc
        self._endpoints = [str(self._config.primary_url), *map(str, self._config.fallback_urls)]
        self._commitment = Commitment(self._config.commitment)
        self._batch_size = max(1, int(self._config.batch_size))
        self._concurrency = max(1, int(self._config.request_concurrency))
        self._logger = get_logger(__name__)
        self._thread_local = threading.local()

    def _execute(self, method_name: str, *args, **kwargs):
        last_exc: Optional[Exception] = None
        clients = self._clients_for_thread()
        for endpoint, client in zip(self._endpoints, clients):
            method = getattr(client, method_name)
            try:
                return method(*args, **kwargs)
            except Exception as exc:  # noqa: BLE001
                last_exc = exc
                self._logger.debug("RPC %s failed on %s: %s", method_name, endpoint, exc)
        if last_exc is not None:
            raise last_exc
        raise RuntimeError(f"RPC {method_name} failed for unknown reasons")

    def read_accounts(self, addresses: Sequence[str]) -> List[Optional[AccountData]]:
        """Return one entry per address, in request order; ``None`` where the account is absent."""

        addresses = list(addresses)
        if not addresses:
            return []
        chunks = [
            addresses[index : index + self._batch_size]
            for index in range(0, len(addresses), self._batch_size)
        ]
        if self._concurrency > 1 and len(chunks) > 1:
            with ThreadPoolExecutor(max_workers=min(self._concurrency, len(chunks))) as executor:
                results = list(executor.map(self._read_chunk, chunks))
        else:
            results = [self._read_chunk(chunk) for chunk in chunks]
        accounts: List[Optional[AccountData]] = []
        for chunk_result in results:
            accounts.extend(chunk_result)
        return accounts

    def _read_chunk(self, addresses: Sequence[str]) -> List[Optional[AccountData]]:
        pubkeys = [Pubkey.from_string(address) for address in addresses]
        response = self._execute(
            "get_multiple_accounts",
            pubkeys,
            commitment=self._commitment,
            encoding="base64",
        )
        values = list(response.value)
        if len(values) != len(addresses):
            raise RuntimeError(
                f"RPC returned {len(values)} accounts for a batch of {len(addresses)}"
            )
        return [
            AccountData(address=address, owner=str(account.owner), data=bytes(account.data))
            if account is not None
            else None
            for address, account in zip(addresses, values)
        ]

    def scan_accounts(
        self,
        program_id: str,
        memcmp: Sequence[Tuple[int, str]] = (),
        *,
        data_size: Optional[int] = None,
        keys_only: bool = False,
    ) -> List[AccountData]:
        """Return every account owned by ``program_id`` that matches the memcmp filters.

        With ``keys_only`` the node returns no account data, only addresses and owners.
        """

        filters: List[object] = [MemcmpOpts(offset=offset, bytes=value) for offset, value in memcmp]
        if data_size is not None:
            filters.append(data_size)
        response = self._execute(
            "get_program_accounts",
            Pubkey.from_string(program_id),
            commitment=self._commitment,
            encoding="base64",
            data_slice=DataSliceOpts(offset=0, length=0) if keys_only else None,
            filters=filters,
        )
        return [
            AccountData(
                address=str(keyed.pubkey),
                owner=str(keyed.account.owner),
                data=bytes(keyed.account.data),
            )
            for keyed in response.value
        ]

    def _clients_for_thread(self) -> List[Client]:
        clients: Optional[List[Client]] = getattr(self._thread_local, "clients", None)
        if clients is None:
            clients = [
                Client(endpoint, commitment=self._commitment, timeout=self._config.request_timeout)
                for endpoint in self._endpoints
            ]
            self._thread_local.clients = clients
        return clients


__all__ = ["AccountData", "LedgerClient"]
