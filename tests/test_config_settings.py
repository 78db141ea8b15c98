import pytest

from dca_keeper.config import Settings, load_settings
from dca_keeper.core.recovery.errors import ConfigError


REQUIRED = dict(
    dca_package_id="0xdca",
    global_config_id="0xc0f",
    fee_tracker_id="0xfee",
    price_feed_registry_id="0x7e9",
)


def test_rpc_url_defaults_to_network_fullnode():
    """Without SUI_RPC_URL the network's public fullnode is used."""

    settings = Settings(_env_file=None, sui_network="testnet")

    assert settings.rpc_url == "https://fullnode.testnet.sui.io:443"
    assert Settings(_env_file=None, sui_rpc_url="http://localhost:9000").rpc_url == "http://localhost:9000"


def test_env_variables_loaded(monkeypatch):
    """Settings read upper-case environment variables."""

    monkeypatch.setenv("DCA_PACKAGE_ID", "0xabc")
    monkeypatch.setenv("MAX_BATCH_SIZE", "7")
    monkeypatch.setenv("PRICE_INFO_OBJECTS", '{"aa": "0x11"}')

    settings = Settings(_env_file=None)

    assert settings.dca_package_id == "0xabc"
    assert settings.max_batch_size == 7
    assert settings.price_info_objects == {"aa": "0x11"}


def test_missing_ids_reported_together():
    """All missing protocol ids are listed in one ConfigError."""

    settings = Settings(_env_file=None, dry_run=True)

    with pytest.raises(ConfigError) as exc:
        settings.validate_for_keeper()

    assert "DCA_PACKAGE_ID is required" in exc.value.problems
    assert "PRICE_FEED_REGISTRY_ID is required" in exc.value.problems


def test_dry_run_does_not_need_key():
    Settings(_env_file=None, dry_run=True, **REQUIRED).validate_for_keeper()


def test_live_mode_needs_key():
    settings = Settings(_env_file=None, **REQUIRED)

    with pytest.raises(ConfigError) as exc:
        settings.validate_for_keeper()

    assert "EXECUTOR_PRIVATE_KEY is required unless DRY_RUN is set" in exc.value.problems


def test_invalid_key_and_ids():
    settings = Settings(
        _env_file=None,
        executor_private_key="not-a-key",
        **{**REQUIRED, "fee_tracker_id": "fee"},
    )

    with pytest.raises(ConfigError) as exc:
        settings.validate_for_keeper()

    problems = exc.value.problems
    assert "FEE_TRACKER_ID must be a 0x-prefixed object id" in problems
    assert any(p.startswith("EXECUTOR_PRIVATE_KEY is invalid") for p in problems)


def test_hex_key_accepted():
    Settings(_env_file=None, executor_private_key="0x" + "01" * 32, **REQUIRED).validate_for_keeper()


def test_out_of_range_values_become_config_error():
    """Field bounds surface as ConfigError, not a pydantic traceback."""

    with pytest.raises(ConfigError) as exc:
        load_settings(_env_file=None, max_batch_size=0)

    assert any(p.startswith("MAX_BATCH_SIZE") for p in exc.value.problems)


def test_retired_settings_ignored(monkeypatch):
    """Old deployments may still export these; they no longer configure anything."""

    monkeypatch.setenv("PYTH_STATE_ID", "0x1")
    monkeypatch.setenv("DEFAULT_SLIPPAGE_BPS", "100")

    Settings(_env_file=None, dry_run=True, **REQUIRED).validate_for_keeper()

    for name in ("pyth_state_id", "wormhole_state_id", "default_slippage_bps"):
        assert name not in Settings.model_fields
