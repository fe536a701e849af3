from __future__ import annotations

from decimal import Decimal

import requests

from fluxor_snapshot.config.settings import OracleConfig
from fluxor_snapshot.ingestion.mixin_api import MixinAssetClient
from fluxor_snapshot.utils.constants import XIN_ASSET_ID

ASSETS = "https://api.mixin.one/network/assets/"


def test_fetch_asset_price_reads_usd_price(session) -> None:
    session.route(ASSETS, {"data": {"asset_id": XIN_ASSET_ID, "price_usd": "104.37"}})
    client = MixinAssetClient(OracleConfig(), session=session)

    assert client.fetch_asset_price(XIN_ASSET_ID) == Decimal("104.37")
    assert session.urls() == [f"{ASSETS}{XIN_ASSET_ID}"]


def test_fetch_asset_price_is_cached(session) -> None:
    session.route(ASSETS, {"data": {"price_usd": "1"}})
    client = MixinAssetClient(OracleConfig(), session=session)

    client.fetch_asset_price(XIN_ASSET_ID)
    client.fetch_asset_price(XIN_ASSET_ID)

    assert len(session.calls) == 1


def test_missing_price_returns_none(session) -> None:
    session.route(ASSETS, {"data": {"price_usd": ""}})
    client = MixinAssetClient(OracleConfig(), session=session)

    assert client.fetch_asset_price(XIN_ASSET_ID) is None


def test_request_failure_returns_none(session, monkeypatch) -> None:
    monkeypatch.setattr(MixinAssetClient._get.retry, "sleep", lambda _: None)
    session.route(ASSETS, requests.ConnectionError("offline"))
    client = MixinAssetClient(OracleConfig(), session=session)

    assert client.fetch_asset_price(XIN_ASSET_ID) is None
    assert len(session.calls) == 3
