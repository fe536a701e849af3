from __future__ import annotations

from pathlib import Path

import pytest

from fluxor_snapshot.config import settings


def test_app_config_loads_profiles_and_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config_path = tmp_path / "app.toml"
    config_path.write_text(
        """
[default.mode]
environment = "production"

[default.rpc]
primary_url = "https://api.default"
request_timeout = 9.5

[default.oracle]
crossbar_url = "https://crossbar.default"
stale_slack_seconds = 10

[staging.mode]
environment = "staging"

[staging.rpc]
primary_url = "https://api.staging"

[staging.oracle]
crossbar_url = "https://crossbar.staging"
"""
    )

    monkeypatch.setenv("APP_CONFIG_FILE", str(config_path))
    monkeypatch.setenv("SNAPSHOT_PROFILE", "staging")
    monkeypatch.setenv("RPC__REQUEST_TIMEOUT", "18")
    monkeypatch.delenv("RPC__PRIMARY_URL", raising=False)

    settings.get_app_config.cache_clear()
    config = settings.get_app_config()

    assert config.mode.environment is settings.Environment.STAGING
    assert str(config.rpc.primary_url).startswith("https://api.staging")
    assert str(config.oracle.crossbar_url).startswith("https://crossbar.staging")
    assert config.oracle.stale_slack_seconds == 10
    # Runtime env beats the file's default profile.
    assert config.rpc.request_timeout == 18.0
    assert config.mode.config_file == config_path


def test_default_profile_used_without_selection(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config_path = tmp_path / "app.toml"
    config_path.write_text(
        """
[default.group]
group_address = "4X38G7YHpS1jjc7hAKvT2dzcGuTCaZfhyDx56Qs9Tk51"
bank_addresses = ["BankA", "BankB"]

[default.cache]
key_prefix = "hash:group:"
"""
    )
    monkeypatch.setenv("APP_CONFIG_FILE", str(config_path))

    config = settings.AppConfig()

    assert config.group.bank_addresses == ["BankA", "BankB"]
    assert config.group.feed_map_exclusions == ["3jt43us"]
    assert config.cache.key_prefix == "hash:group:"


def test_helius_key_promotes_rpc_endpoint(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HELIUS_API_KEY", "abc123")

    config = settings.AppConfig()

    assert str(config.rpc.primary_url) == "https://mainnet.helius-rpc.com/?api-key=abc123"
    assert any("api.mainnet-beta.solana.com" in str(url) for url in config.rpc.fallback_urls)


def test_feed_asset_override_keys_are_normalized() -> None:
    oracle = settings.OracleConfig(feed_asset_overrides={"0xABCDEF": "asset-1"})

    assert oracle.feed_asset_overrides == {"abcdef": "asset-1"}


def test_fallback_urls_accept_comma_separated_string() -> None:
    rpc = settings.RPCConfig(fallback_urls="https://a.example, https://b.example,https://a.example")

    assert [str(url).rstrip("/") for url in rpc.fallback_urls] == [
        "https://a.example",
        "https://b.example",
    ]
