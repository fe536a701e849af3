"""Mixin network client used to price assets that simulation cannot."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Optional

import requests
from cachetools import TTLCache
from tenacity import RetryError, retry, stop_after_attempt, wait_exponential

from ..config.settings import OracleConfig, get_app_config
from ..monitoring.logger import get_logger

DEFAULT_HEADERS = {"User-Agent": "fluxor-snapshot/1.0", "Accept": "application/json"}


class MixinAssetClient:
    """Looks up the USD price of a single Mixin network asset."""

    def __init__(
        self,
        config: Optional[OracleConfig] = None,
        cache_ttl: int = 15,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._config = config or get_app_config().oracle
        self._cache: TTLCache[str, Decimal] = TTLCache(maxsize=64, ttl=cache_ttl)
        self._session = session or requests.Session()
        self._logger = get_logger(__name__)

    @retry(wait=wait_exponential(multiplier=0.5, min=0.5, max=4), stop=stop_after_attempt(3))
    def _get(self, path: str) -> dict:
        url = f"{str(self._config.mixin_api_url).rstrip('/')}{path}"
        response = self._session.get(
            url,
            headers=DEFAULT_HEADERS,
            timeout=self._config.request_timeout,
        )
        response.raise_for_status()
        return response.json()

    def fetch_asset_price(self, asset_id: str) -> Optional[Decimal]:
        """Return the asset's ``price_usd`` or ``None`` when it cannot be determined."""

        if asset_id in self._cache:
            return self._cache[asset_id]
        try:
            payload = self._get(f"/network/assets/{asset_id}")
        except (RetryError, requests.RequestException, ValueError) as exc:
            self._logger.warning("Failed to fetch Mixin asset %s: %s", asset_id, exc)
            return None

        data = payload.get("data") if isinstance(payload, dict) else None
        raw_price = data.get("price_usd") if isinstance(data, dict) else None
        if raw_price in (None, ""):
            return None
        try:
            price = Decimal(str(raw_price))
        except InvalidOperation:
            return None
        if not price.is_finite():
            return None
        self._cache[asset_id] = price
        return price


__all__ = ["MixinAssetClient"]
