#!/usr/bin/env python3
import argparse
import json
import os
import sys
from pathlib import Path
from typing import Callable, NamedTuple, Optional, TypeVar

import constants
from analysis.models import AssetConfig

T = TypeVar('T')

WALLET_STRATEGIES = ('round_robin', 'highest_balance', 'least_used', 'random')
REFERENCE_SOURCES = ('yahoo', 'pyth')
LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR')

_TRUE_VALUES = {'1', 'true', 'yes', 'on'}
_FALSE_VALUES = {'0', 'false', 'no', 'off'}


class AppConfig(NamedTuple):
    """Typed configuration object."""
    rpc_url: str
    wallet_private_keys: list[str]
    wallet_strategy: str
    assets: list[AssetConfig]
    min_spread_percent: float
    trade_amount_usdc: float
    poll_interval_ms: int
    min_profit: float
    max_slippage_percent: float
    auto_execute: bool
    reference_source: str
    jupiter_api_url: str
    pyth_api_url: str
    trading_fee_percent: float
    gas_cost_usd: float
    min_hold_seconds: float
    max_hold_seconds: float
    check_interval_seconds: float
    take_profit_percent: float
    min_profit_exit_percent: float
    max_failed_quotes: int
    emergency_slippage_bps: int
    max_retries: int
    data_dir: str
    telegram_enabled: bool
    telegram_bot_token: str | None
    telegram_chat_id: str | None
    log_level: str

    @property
    def poll_interval(self) -> float:
        return self.poll_interval_ms / 1000

    @property
    def max_slippage_bps(self) -> int:
        return int(round(self.max_slippage_percent * 100))

    @property
    def opportunity_log_path(self) -> Path:
        filename = constants.SINGLE_ASSET_LOG_FILENAME if len(self.assets) == 1 else constants.MULTI_ASSET_LOG_FILENAME
        return Path(self.data_dir) / filename

    @property
    def trade_history_path(self) -> Path:
        return Path(self.data_dir) / constants.TRADE_HISTORY_DB_FILENAME


def _fatal(message: str) -> None:
    print(f"{constants.C_RED}{message}{constants.C_RESET}")
    sys.exit(1)


def _parse_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"not a boolean: {raw!r}")


def _env(name: str, default: T, cast: Callable[[str], T]) -> T:
    """Reads an environment variable, failing fast on malformed values."""
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw.strip())
    except ValueError:
        _fatal(f"Invalid value for {name}: {raw!r}")


def split_private_keys(raw: Optional[str]) -> list[str]:
    """Splits a credential list into individual secrets.

    Accepts comma separated base58 strings, a single JSON byte array, or a
    JSON list of byte arrays.
    """
    if not raw or not raw.strip():
        return []
    raw = raw.strip()
    if raw.startswith('[['):
        arrays = json.loads(raw)
        return [json.dumps(array) for array in arrays]
    if raw.startswith('['):
        return [raw]
    return [part.strip() for part in raw.split(',') if part.strip()]


def resolve_assets(symbols: Optional[list[str]]) -> list[AssetConfig]:
    """Builds AssetConfigs from the token table and ``*_MINT_ADDRESS`` variables."""
    explicit = bool(symbols)
    candidates = symbols or list(constants.TOKENIZED_STOCKS.keys())
    assets: list[AssetConfig] = []
    for symbol in candidates:
        token = constants.TOKENIZED_STOCKS.get(symbol)
        if token is None:
            _fatal(f"Unknown token '{symbol}'. Choose from: {', '.join(constants.TOKENIZED_STOCKS)}")
        mint = (os.environ.get(str(token['mintEnvVar'])) or '').strip()
        if not mint:
            if explicit:
                _fatal(f"{token['mintEnvVar']} environment variable not set; required to monitor {symbol}.")
            continue
        assets.append(
            AssetConfig(
                symbol=symbol,
                mint=mint,
                reference_symbol=str(token['referenceSymbol']),
                pyth_feed_id=token['pythFeedId'],
                decimals=int(token['decimals']),
            )
        )
    if not assets:
        _fatal("No tokenized stock mints configured. Set at least one *_MINT_ADDRESS environment variable.")
    return assets


def _validate(args: argparse.Namespace) -> None:
    checks = [
        (args.min_spread > 0, '--min-spread must be greater than 0.'),
        (args.trade_amount > 0, '--trade-amount must be greater than 0.'),
        (args.interval > 0, '--interval must be greater than 0 milliseconds.'),
        (args.min_profit >= 0, '--min-profit must not be negative.'),
        (0 < args.max_slippage <= 50, '--max-slippage must be within (0, 50] percent.'),
        (args.fee_percent >= 0, '--fee-percent must not be negative.'),
        (args.gas_cost >= 0, '--gas-cost must not be negative.'),
        (args.min_hold >= 0, '--min-hold must not be negative.'),
        (args.max_hold >= args.min_hold, '--max-hold must be at least --min-hold.'),
        (args.check_interval > 0, '--check-interval must be greater than 0.'),
        (args.take_profit > 0, '--take-profit must be greater than 0.'),
        (0 < args.min_profit_exit < args.take_profit, '--min-profit-exit must be positive and below --take-profit.'),
        (args.max_failed_quotes >= 1, '--max-failed-quotes must be at least 1.'),
        (0 < args.emergency_slippage_bps <= 10_000, '--emergency-slippage-bps must be within (0, 10000].'),
        (args.max_retries >= 1, '--max-retries must be at least 1.'),
    ]
    for ok, message in checks:
        if not ok:
            _fatal(message)


def load_config(argv: Optional[list[str]] = None) -> AppConfig:
    """
    Parses command-line arguments and loads environment variables to create a configuration object.
    Every option defaults to its environment variable.
    """
    env_tokens = _env(constants.MONITORED_TOKENS_ENV_VAR, None, lambda raw: [t.strip() for t in raw.split(',') if t.strip()])

    parser = argparse.ArgumentParser(
        description="Monitor tokenized stocks on Jupiter against reference prices and trade the spread.",
        epilog="Example: ./main.py --token TSLAr NVDAr --min-spread 0.8 --trade-amount 100"
    )
    # --- Market & Thresholds ---
    parser.add_argument('--token', nargs='+', default=env_tokens, help='One or more tokenized stock symbols to monitor (default: every token with a mint configured).')
    parser.add_argument('--reference-source', choices=REFERENCE_SOURCES, default=_env(constants.REFERENCE_PRICE_SOURCE_ENV_VAR, 'yahoo', str.lower), help='Reference price feed (default: yahoo).')
    parser.add_argument('--min-spread', type=float, default=_env(constants.MIN_SPREAD_PERCENT_ENV_VAR, 0.8, float), help='Minimum absolute spread percentage (default: 0.8).')
    parser.add_argument('--min-profit', type=float, default=_env(constants.MIN_PROFIT_THRESHOLD_ENV_VAR, 0.5, float), help='Minimum estimated profit in USD after fees (default: 0.5).')
    parser.add_argument('--trade-amount', type=float, default=_env(constants.TRADE_AMOUNT_USDC_ENV_VAR, 100.0, float), help='USDC notional per trade (default: 100).')
    parser.add_argument('--interval', type=int, default=_env(constants.POLL_INTERVAL_MS_ENV_VAR, 10_000, int), help='Milliseconds between monitor ticks (default: 10000).')
    parser.add_argument('--max-slippage', type=float, default=_env(constants.MAX_SLIPPAGE_PERCENT_ENV_VAR, 0.5, float), help='Maximum slippage percentage for buys (default: 0.5).')
    parser.add_argument('--fee-percent', type=float, default=_env(constants.TRADING_FEE_PERCENT_ENV_VAR, constants.DEFAULT_TRADING_FEE_PERCENT, float), help='Trading fee percentage used in profit estimates (default: 0.3).')
    parser.add_argument('--gas-cost', type=float, default=_env(constants.GAS_COST_USD_ENV_VAR, constants.DEFAULT_GAS_COST_USD, float), help='Fixed gas cost in USD used in profit estimates (default: 0.01).')

    # --- Execution ---
    parser.add_argument('--auto-execute', action='store_true', default=_env(constants.AUTO_EXECUTE_ENV_VAR, False, _parse_bool), help='Submit real swaps. Without it trades are simulated.')
    parser.add_argument('--rpc-url', type=str, default=_env(constants.SOLANA_RPC_URL_ENV_VAR, constants.DEFAULT_SOLANA_RPC_URL, str), help='Solana RPC endpoint.')
    parser.add_argument('--wallet-strategy', choices=WALLET_STRATEGIES, default=_env(constants.WALLET_SELECTION_STRATEGY_ENV_VAR, 'round_robin', str.lower), help='Wallet selection strategy (default: round_robin).')
    parser.add_argument('--jupiter-api-url', type=str, default=_env(constants.JUPITER_API_URL_ENV_VAR, constants.JUPITER_API_BASE_URL, str), help='Jupiter swap API base URL.')
    parser.add_argument('--pyth-api-url', type=str, default=_env(constants.PYTH_API_URL_ENV_VAR, constants.PYTH_API_BASE_URL, str), help='Pyth Hermes API base URL.')
    parser.add_argument('--max-retries', type=int, default=_env(constants.MAX_RETRIES_ENV_VAR, 3, int), help='Attempts per external request (default: 3).')

    # --- Convergence Monitoring ---
    parser.add_argument('--min-hold', type=float, default=_env(constants.MIN_HOLD_SECONDS_ENV_VAR, float(constants.DEFAULT_MIN_HOLD_SECONDS), float), help='Seconds to hold before the first exit check (default: 120).')
    parser.add_argument('--max-hold', type=float, default=_env(constants.MAX_HOLD_SECONDS_ENV_VAR, float(constants.DEFAULT_MAX_HOLD_SECONDS), float), help='Forced exit after this many seconds (default: 600).')
    parser.add_argument('--check-interval', type=float, default=_env(constants.CHECK_INTERVAL_SECONDS_ENV_VAR, float(constants.DEFAULT_CHECK_INTERVAL_SECONDS), float), help='Seconds between exit checks (default: 15).')
    parser.add_argument('--take-profit', type=float, default=_env(constants.TAKE_PROFIT_PERCENT_ENV_VAR, constants.DEFAULT_TAKE_PROFIT_PERCENT, float), help='Take-profit percentage (default: 0.8).')
    parser.add_argument('--min-profit-exit', type=float, default=_env(constants.MIN_PROFIT_EXIT_PERCENT_ENV_VAR, constants.DEFAULT_MIN_PROFIT_EXIT_PERCENT, float), help='Early exit profit percentage once min hold elapsed (default: 0.2).')
    parser.add_argument('--max-failed-quotes', type=int, default=_env(constants.MAX_FAILED_QUOTES_ENV_VAR, constants.DEFAULT_MAX_FAILED_QUOTES, int), help='Consecutive failed sell quotes before an emergency exit (default: 5).')
    parser.add_argument('--emergency-slippage-bps', type=int, default=_env(constants.EMERGENCY_SLIPPAGE_BPS_ENV_VAR, constants.DEFAULT_EMERGENCY_SLIPPAGE_BPS, int), help='Slippage for emergency sells in bps (default: 500).')

    # --- Operations ---
    parser.add_argument('--data-dir', type=str, default=_env(constants.DATA_DIR_ENV_VAR, 'data', str), help='Directory for the opportunity log and trade history (default: data).')
    parser.add_argument('--telegram-enabled', action='store_true', help='Enable the Telegram status bot and alerts.')
    parser.add_argument('--log-level', choices=LOG_LEVELS, default=_env(constants.LOG_LEVEL_ENV_VAR, 'INFO', str.upper), help='Logging level (default: INFO).')

    args = parser.parse_args(argv)

    if args.wallet_strategy not in WALLET_STRATEGIES:
        _fatal(f"Unknown wallet selection strategy '{args.wallet_strategy}'. Choose from: {', '.join(WALLET_STRATEGIES)}")
    if args.reference_source not in REFERENCE_SOURCES:
        _fatal(f"Unknown reference price source '{args.reference_source}'. Choose from: {', '.join(REFERENCE_SOURCES)}")
    if args.log_level not in LOG_LEVELS:
        _fatal(f"Unknown log level '{args.log_level}'. Choose from: {', '.join(LOG_LEVELS)}")
    _validate(args)

    assets = resolve_assets(args.token)

    try:
        private_keys = split_private_keys(os.environ.get(constants.WALLET_PRIVATE_KEY_ENV_VAR))
        private_keys += split_private_keys(os.environ.get(constants.WALLET_PRIVATE_KEYS_ENV_VAR))
    except json.JSONDecodeError as exc:
        _fatal(f"{constants.WALLET_PRIVATE_KEYS_ENV_VAR} is not a valid JSON list of byte arrays: {exc}")

    if args.auto_execute and not private_keys:
        print(f"{constants.C_RED}--auto-execute requires {constants.WALLET_PRIVATE_KEY_ENV_VAR} or {constants.WALLET_PRIVATE_KEYS_ENV_VAR} to be set.{constants.C_RESET}")
        sys.exit(1)

    telegram_bot_token = os.environ.get(constants.TELEGRAM_BOT_TOKEN_ENV_VAR)
    telegram_chat_id = os.environ.get(constants.TELEGRAM_CHAT_ID_ENV_VAR)
    if args.telegram_enabled and not (telegram_bot_token and telegram_chat_id):
        print(f"{constants.C_RED}Telegram is enabled, but {constants.TELEGRAM_BOT_TOKEN_ENV_VAR} or {constants.TELEGRAM_CHAT_ID_ENV_VAR} are not set.{constants.C_RESET}")
        sys.exit(1)

    return AppConfig(
        rpc_url=args.rpc_url,
        wallet_private_keys=private_keys,
        wallet_strategy=args.wallet_strategy,
        assets=assets,
        min_spread_percent=args.min_spread,
        trade_amount_usdc=args.trade_amount,
        poll_interval_ms=args.interval,
        min_profit=args.min_profit,
        max_slippage_percent=args.max_slippage,
        auto_execute=args.auto_execute,
        reference_source=args.reference_source,
        jupiter_api_url=args.jupiter_api_url.rstrip('/'),
        pyth_api_url=args.pyth_api_url.rstrip('/'),
        trading_fee_percent=args.fee_percent,
        gas_cost_usd=args.gas_cost,
        min_hold_seconds=args.min_hold,
        max_hold_seconds=args.max_hold,
        check_interval_seconds=args.check_interval,
        take_profit_percent=args.take_profit,
        min_profit_exit_percent=args.min_profit_exit,
        max_failed_quotes=args.max_failed_quotes,
        emergency_slippage_bps=args.emergency_slippage_bps,
        max_retries=args.max_retries,
        data_dir=args.data_dir,
        telegram_enabled=args.telegram_enabled,
        telegram_bot_token=telegram_bot_token,
        telegram_chat_id=telegram_chat_id,
        log_level=args.log_level,
    )
