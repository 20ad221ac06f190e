#!/usr/bin/env python3
from typing import Dict, Union

# --- ANSI Color Codes ---
C_GREEN = '\033[92m'
C_RED = '\033[91m'
C_YELLOW = '\033[93m'
C_BLUE = '\033[94m'
C_RESET = '\033[0m'

# --- API Configuration ---
DEFAULT_SOLANA_RPC_URL = 'https://api.mainnet-beta.solana.com'
JUPITER_API_BASE_URL = 'https://public.jupiterapi.com'
PYTH_API_BASE_URL = 'https://hermes.pyth.network/api'
YAHOO_CHART_API_BASE_URL = 'https://query1.finance.yahoo.com/v8/finance/chart'
YAHOO_USER_AGENT = 'Mozilla/5.0 (compatible; RStockArbBot/1.0)'

# --- Environment Variable Names ---
SOLANA_RPC_URL_ENV_VAR = 'SOLANA_RPC_URL'
WALLET_PRIVATE_KEY_ENV_VAR = 'WALLET_PRIVATE_KEY'
WALLET_PRIVATE_KEYS_ENV_VAR = 'WALLET_PRIVATE_KEYS'
WALLET_SELECTION_STRATEGY_ENV_VAR = 'WALLET_SELECTION_STRATEGY'
MIN_SPREAD_PERCENT_ENV_VAR = 'MIN_SPREAD_PERCENT'
TRADE_AMOUNT_USDC_ENV_VAR = 'TRADE_AMOUNT_USDC'
POLL_INTERVAL_MS_ENV_VAR = 'POLL_INTERVAL_MS'
MAX_SLIPPAGE_PERCENT_ENV_VAR = 'MAX_SLIPPAGE_PERCENT'
MIN_PROFIT_THRESHOLD_ENV_VAR = 'MIN_PROFIT_THRESHOLD'
AUTO_EXECUTE_ENV_VAR = 'AUTO_EXECUTE'
MONITORED_TOKENS_ENV_VAR = 'MONITORED_TOKENS'
REFERENCE_PRICE_SOURCE_ENV_VAR = 'REFERENCE_PRICE_SOURCE'
JUPITER_API_URL_ENV_VAR = 'JUPITER_API_URL'
PYTH_API_URL_ENV_VAR = 'PYTH_API_URL'
TRADING_FEE_PERCENT_ENV_VAR = 'TRADING_FEE_PERCENT'
GAS_COST_USD_ENV_VAR = 'GAS_COST_USD'
MIN_HOLD_SECONDS_ENV_VAR = 'MIN_HOLD_SECONDS'
MAX_HOLD_SECONDS_ENV_VAR = 'MAX_HOLD_SECONDS'
CHECK_INTERVAL_SECONDS_ENV_VAR = 'CHECK_INTERVAL_SECONDS'
TAKE_PROFIT_PERCENT_ENV_VAR = 'TAKE_PROFIT_PERCENT'
MIN_PROFIT_EXIT_PERCENT_ENV_VAR = 'MIN_PROFIT_EXIT_PERCENT'
MAX_FAILED_QUOTES_ENV_VAR = 'MAX_FAILED_QUOTES'
EMERGENCY_SLIPPAGE_BPS_ENV_VAR = 'EMERGENCY_SLIPPAGE_BPS'
MAX_RETRIES_ENV_VAR = 'MAX_RETRIES'
DATA_DIR_ENV_VAR = 'DATA_DIR'
LOG_LEVEL_ENV_VAR = 'LOG_LEVEL'
TELEGRAM_BOT_TOKEN_ENV_VAR = 'TELEGRAM_BOT_TOKEN'
TELEGRAM_CHAT_ID_ENV_VAR = 'TELEGRAM_CHAT_ID'

# --- Solana Mints & Units ---
USDC_MINT = 'EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v'
USDC_DECIMALS = 6
RSTOCK_DECIMALS = 9
LAMPORTS_PER_SOL = 1_000_000_000
MIN_SOL_RESERVE = 0.01

# --- Tokenized Stock Configuration ---
TOKENIZED_STOCKS: Dict[str, Dict[str, Union[str, int, None]]] = {
    'TSLAr': {
        'name': 'Tesla',
        'mintEnvVar': 'RTSLA_MINT_ADDRESS',
        'referenceSymbol': 'TSLA',
        'pythFeedId': '0x16dad506d7db8da01c87581c87ca897a012a153557d4d578c3b9c9e1bc0632f1',
        'decimals': RSTOCK_DECIMALS,
    },
    'CRCLr': {
        'name': 'Circle',
        'mintEnvVar': 'CRCL_MINT_ADDRESS',
        'referenceSymbol': 'CRCL',
        'pythFeedId': None,
        'decimals': RSTOCK_DECIMALS,
    },
    'SPYr': {
        'name': 'S&P 500 ETF',
        'mintEnvVar': 'SPY_MINT_ADDRESS',
        'referenceSymbol': 'SPY',
        'pythFeedId': '0x19e09bb805456ada3979a7d1cbb4b6d63babc3a0f8e8a9509f68afa5c4c11cd5',
        'decimals': RSTOCK_DECIMALS,
    },
    'MSTRr': {
        'name': 'MicroStrategy',
        'mintEnvVar': 'MSTR_MINT_ADDRESS',
        'referenceSymbol': 'MSTR',
        'pythFeedId': '0xd8b856d7e17c467877d2d947f27b832db0d65b362ddb6f728797d46b0a8b54c0',
        'decimals': RSTOCK_DECIMALS,
    },
    'NVDAr': {
        'name': 'NVIDIA',
        'mintEnvVar': 'NVDA_MINT_ADDRESS',
        'referenceSymbol': 'NVDA',
        'pythFeedId': '0xb1073854ed24cbc755dc527418f52b7d271f6cc967bbf8d8129112b18860a593',
        'decimals': RSTOCK_DECIMALS,
    },
}

# --- Price Discovery ---
VENUE_PRICE_PROBE_USDC = 100.0
VENUE_PRICE_PROBE_SLIPPAGE_BPS = 50
REFERENCE_PRICE_CACHE_TTL = 2.0
REFERENCE_PRICE_TIMEOUT = 5

# --- Fee Model ---
DEFAULT_TRADING_FEE_PERCENT = 0.3
DEFAULT_GAS_COST_USD = 0.01

# --- Swap Execution ---
PRIORITY_FEE_LEVEL = 'high'
PRIORITY_FEE_MAX_LAMPORTS = 1_000_000
HIGH_PRICE_IMPACT_PCT = 2.0
CONFIRMATION_TIMEOUT = 60.0
CONFIRMATION_POLL_INTERVAL = 2.0

# --- Convergence Monitoring Defaults ---
DEFAULT_MIN_HOLD_SECONDS = 120
DEFAULT_MAX_HOLD_SECONDS = 600
DEFAULT_CHECK_INTERVAL_SECONDS = 15
DEFAULT_TAKE_PROFIT_PERCENT = 0.8
DEFAULT_MIN_PROFIT_EXIT_PERCENT = 0.2
DEFAULT_MAX_FAILED_QUOTES = 5
DEFAULT_SELL_SLIPPAGE_BPS = 100
DEFAULT_EMERGENCY_SLIPPAGE_BPS = 500

# --- Persistence ---
OPPORTUNITY_LOG_MAX_ENTRIES = 1000
SINGLE_ASSET_LOG_FILENAME = 'opportunities.json'
MULTI_ASSET_LOG_FILENAME = 'multi-token-opportunities.json'
TRADE_HISTORY_DB_FILENAME = 'trade_history.db'
