import json
from pathlib import Path

import pytest

import constants
from config import load_config, split_private_keys

MANAGED_ENV_VARS = [
    constants.SOLANA_RPC_URL_ENV_VAR,
    constants.WALLET_PRIVATE_KEY_ENV_VAR,
    constants.WALLET_PRIVATE_KEYS_ENV_VAR,
    constants.WALLET_SELECTION_STRATEGY_ENV_VAR,
    constants.MIN_SPREAD_PERCENT_ENV_VAR,
    constants.TRADE_AMOUNT_USDC_ENV_VAR,
    constants.POLL_INTERVAL_MS_ENV_VAR,
    constants.MAX_SLIPPAGE_PERCENT_ENV_VAR,
    constants.MIN_PROFIT_THRESHOLD_ENV_VAR,
    constants.AUTO_EXECUTE_ENV_VAR,
    constants.MONITORED_TOKENS_ENV_VAR,
    constants.REFERENCE_PRICE_SOURCE_ENV_VAR,
    constants.TAKE_PROFIT_PERCENT_ENV_VAR,
    constants.MIN_PROFIT_EXIT_PERCENT_ENV_VAR,
    constants.LOG_LEVEL_ENV_VAR,
    constants.DATA_DIR_ENV_VAR,
    constants.TELEGRAM_BOT_TOKEN_ENV_VAR,
    constants.TELEGRAM_CHAT_ID_ENV_VAR,
] + [str(token['mintEnvVar']) for token in constants.TOKENIZED_STOCKS.values()]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in MANAGED_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv('RTSLA_MINT_ADDRESS', 'TSLArMint1111111111111111111111111111111111')


def test_defaults_match_documented_values():
    config = load_config([])

    assert [asset.symbol for asset in config.assets] == ['TSLAr']
    assert config.assets[0].reference_symbol == 'TSLA'
    assert config.rpc_url == constants.DEFAULT_SOLANA_RPC_URL
    assert config.wallet_strategy == 'round_robin'
    assert config.min_spread_percent == 0.8
    assert config.trade_amount_usdc == 100.0
    assert config.poll_interval_ms == 10_000
    assert config.poll_interval == 10.0
    assert config.min_profit == 0.5
    assert config.max_slippage_bps == 50
    assert config.auto_execute is False
    assert config.take_profit_percent == 0.8
    assert config.min_hold_seconds == 120
    assert config.max_failed_quotes == 5
    assert config.wallet_private_keys == []


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv(constants.MIN_SPREAD_PERCENT_ENV_VAR, '1.5')
    monkeypatch.setenv(constants.WALLET_SELECTION_STRATEGY_ENV_VAR, 'least_used')
    monkeypatch.setenv(constants.POLL_INTERVAL_MS_ENV_VAR, '2500')
    monkeypatch.setenv(constants.AUTO_EXECUTE_ENV_VAR, 'true')
    monkeypatch.setenv(constants.WALLET_PRIVATE_KEYS_ENV_VAR, 'keyA, keyB')

    config = load_config([])

    assert config.min_spread_percent == 1.5
    assert config.wallet_strategy == 'least_used'
    assert config.poll_interval == 2.5
    assert config.auto_execute is True
    assert config.wallet_private_keys == ['keyA', 'keyB']


def test_cli_arguments_take_precedence(monkeypatch):
    monkeypatch.setenv(constants.MIN_SPREAD_PERCENT_ENV_VAR, '1.5')

    config = load_config(['--min-spread', '0.6', '--trade-amount', '250'])

    assert config.min_spread_percent == 0.6
    assert config.trade_amount_usdc == 250.0


def test_malformed_environment_value_is_fatal(monkeypatch):
    monkeypatch.setenv(constants.MIN_SPREAD_PERCENT_ENV_VAR, 'lots')

    with pytest.raises(SystemExit):
        load_config([])


def test_unknown_strategy_is_fatal(monkeypatch):
    monkeypatch.setenv(constants.WALLET_SELECTION_STRATEGY_ENV_VAR, 'biggest_first')

    with pytest.raises(SystemExit):
        load_config([])


def test_auto_execute_without_credentials_is_fatal():
    with pytest.raises(SystemExit):
        load_config(['--auto-execute'])


def test_requested_token_without_mint_is_fatal():
    with pytest.raises(SystemExit):
        load_config(['--token', 'NVDAr'])


def test_no_configured_mints_is_fatal(monkeypatch):
    monkeypatch.delenv('RTSLA_MINT_ADDRESS')

    with pytest.raises(SystemExit):
        load_config([])


def test_min_profit_exit_must_be_below_take_profit():
    with pytest.raises(SystemExit):
        load_config(['--take-profit', '0.5', '--min-profit-exit', '0.5'])


def test_telegram_requires_credentials():
    with pytest.raises(SystemExit):
        load_config(['--telegram-enabled'])


def test_opportunity_log_path_depends_on_asset_count(monkeypatch, tmp_path):
    monkeypatch.setenv('NVDA_MINT_ADDRESS', 'NVDArMint1111111111111111111111111111111111')

    single = load_config(['--token', 'TSLAr', '--data-dir', str(tmp_path)])
    multi = load_config(['--data-dir', str(tmp_path)])

    assert single.opportunity_log_path == Path(tmp_path) / constants.SINGLE_ASSET_LOG_FILENAME
    assert [asset.symbol for asset in multi.assets] == ['TSLAr', 'NVDAr']
    assert multi.opportunity_log_path == Path(tmp_path) / constants.MULTI_ASSET_LOG_FILENAME


def test_split_private_keys_formats():
    arrays = [[1, 2, 3], [4, 5, 6]]

    assert split_private_keys(None) == []
    assert split_private_keys('abc,def') == ['abc', 'def']
    assert split_private_keys('[1, 2, 3]') == ['[1, 2, 3]']
    assert split_private_keys(json.dumps(arrays)) == [json.dumps(a) for a in arrays]
