import pytest

from analysis.models import AssetConfig
from config import AppConfig

TSLA = AssetConfig(
    symbol='TSLAr',
    mint='TSLArMint1111111111111111111111111111111111',
    reference_symbol='TSLA',
    pyth_feed_id='0x16dad506d7db8da01c87581c87ca897a012a153557d4d578c3b9c9e1bc0632f1',
    decimals=9,
)
NVDA = AssetConfig(
    symbol='NVDAr',
    mint='NVDArMint1111111111111111111111111111111111',
    reference_symbol='NVDA',
    pyth_feed_id=None,
    decimals=9,
)


def build_config(**overrides) -> AppConfig:
    config = AppConfig(
        rpc_url='http://mock-rpc',
        wallet_private_keys=[],
        wallet_strategy='round_robin',
        assets=[TSLA],
        min_spread_percent=0.5,
        trade_amount_usdc=100.0,
        poll_interval_ms=1000,
        min_profit=0.4,
        max_slippage_percent=0.5,
        auto_execute=False,
        reference_source='yahoo',
        jupiter_api_url='http://mock-jupiter',
        pyth_api_url='http://mock-pyth',
        trading_fee_percent=0.3,
        gas_cost_usd=0.01,
        min_hold_seconds=120.0,
        max_hold_seconds=600.0,
        check_interval_seconds=15.0,
        take_profit_percent=0.8,
        min_profit_exit_percent=0.2,
        max_failed_quotes=5,
        emergency_slippage_bps=500,
        max_retries=1,
        data_dir='data',
        telegram_enabled=False,
        telegram_bot_token=None,
        telegram_chat_id=None,
        log_level='INFO',
    )
    return config._replace(**overrides)


@pytest.fixture
def mock_config():
    return build_config()


@pytest.fixture
def make_config():
    return build_config


@pytest.fixture
def tsla():
    return TSLA


@pytest.fixture
def nvda():
    return NVDA
