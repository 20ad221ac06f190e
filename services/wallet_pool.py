"""Funding wallets, balance tracking and per-trade wallet selection."""
from __future__ import annotations

import asyncio
import json
import logging
import random
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional

import aiohttp
from solders.keypair import Keypair

from constants import MIN_SOL_RESERVE, USDC_MINT
from services.solana_rpc import SolanaRpcClient, SolanaRpcError

logger = logging.getLogger(__name__)

_BASE58_SECRET = re.compile(r'^[1-9A-HJ-NP-Za-km-z]{64,90}$')


class WalletSelectionStrategy(str, Enum):
    ROUND_ROBIN = 'round_robin'
    HIGHEST_BALANCE = 'highest_balance'
    LEAST_USED = 'least_used'
    RANDOM = 'random'


@dataclass
class WalletIdentity:
    name: str
    keypair: Keypair
    public_key: str
    sol_balance: float = 0.0
    usdc_balance: float = 0.0
    last_used: Optional[datetime] = None
    total_trades: int = 0
    successful_trades: int = 0
    failed_trades: int = 0
    total_profit: float = 0.0

    @property
    def success_rate(self) -> float:
        if self.total_trades == 0:
            return 0.0
        return self.successful_trades / self.total_trades * 100


def decode_private_key(secret: str) -> Keypair:
    """Decodes a base58 secret key or a JSON byte array (``[12, 34, ...]``)."""
    secret = secret.strip()
    if secret.startswith('['):
        values = json.loads(secret)
        if not isinstance(values, list):
            raise ValueError("JSON private key must be an integer array")
        try:
            return Keypair.from_bytes(bytes(values))
        except Exception as exc:
            raise ValueError(f"invalid private key bytes: {exc}") from exc
    if not _BASE58_SECRET.match(secret):
        raise ValueError("unsupported private key format")
    try:
        return Keypair.from_base58_string(secret)
    except Exception as exc:
        raise ValueError(f"invalid base58 private key: {exc}") from exc


class WalletPool:
    """Holds the funding identities and picks one per trade."""

    def __init__(
        self,
        rpc_client: SolanaRpcClient,
        strategy: WalletSelectionStrategy | str = WalletSelectionStrategy.ROUND_ROBIN,
        usdc_mint: str = USDC_MINT,
        min_sol_reserve: float = MIN_SOL_RESERVE,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.rpc_client = rpc_client
        self.strategy = WalletSelectionStrategy(strategy)
        self.usdc_mint = usdc_mint
        self.min_sol_reserve = min_sol_reserve
        self._rng = rng or random.Random()
        self._wallets: list[WalletIdentity] = []
        self._next_index = 0

    @property
    def wallets(self) -> list[WalletIdentity]:
        return list(self._wallets)

    def __len__(self) -> int:
        return len(self._wallets)

    def add_wallet(self, secret: str, name: Optional[str] = None) -> Optional[WalletIdentity]:
        """Adds one credential. A credential that cannot be decoded is skipped."""
        try:
            keypair = decode_private_key(secret)
        except (ValueError, TypeError) as exc:
            logger.error("Skipping wallet credential #%d: %s", len(self._wallets) + 1, exc)
            return None
        wallet = WalletIdentity(
            name=name or f"Wallet-{len(self._wallets) + 1}",
            keypair=keypair,
            public_key=str(keypair.pubkey()),
        )
        self._wallets.append(wallet)
        logger.info("Loaded %s (%s)", wallet.name, wallet.public_key)
        return wallet

    def add_wallets(self, secrets: Iterable[str]) -> int:
        return sum(1 for secret in secrets if self.add_wallet(secret) is not None)

    async def refresh_balances(self, wallet: WalletIdentity) -> None:
        """Refreshes cached SOL and USDC balances. A failed lookup caches 0."""
        try:
            wallet.sol_balance = await self.rpc_client.get_sol_balance(wallet.public_key)
        except (SolanaRpcError, aiohttp.ClientError, asyncio.TimeoutError, KeyError) as exc:
            logger.error("Could not fetch SOL balance for %s: %s", wallet.name, exc)
            wallet.sol_balance = 0.0
        try:
            wallet.usdc_balance = await self.rpc_client.get_token_balance(wallet.public_key, self.usdc_mint)
        except (SolanaRpcError, aiohttp.ClientError, asyncio.TimeoutError, KeyError) as exc:
            logger.error("Could not fetch USDC balance for %s: %s", wallet.name, exc)
            wallet.usdc_balance = 0.0

    async def refresh_all_balances(self) -> None:
        await asyncio.gather(*(self.refresh_balances(wallet) for wallet in self._wallets))

    async def select_wallet(self) -> Optional[WalletIdentity]:
        if not self._wallets:
            return None
        await self.refresh_all_balances()

        if self.strategy is WalletSelectionStrategy.ROUND_ROBIN:
            wallet = self._wallets[self._next_index % len(self._wallets)]
            self._next_index = (self._next_index + 1) % len(self._wallets)
        elif self.strategy is WalletSelectionStrategy.HIGHEST_BALANCE:
            wallet = max(self._wallets, key=lambda w: w.usdc_balance)
        elif self.strategy is WalletSelectionStrategy.LEAST_USED:
            wallet = min(self._wallets, key=lambda w: w.total_trades)
        else:
            wallet = self._rng.choice(self._wallets)

        logger.info(
            "Selected %s via %s (%.2f USDC, %.4f SOL)",
            wallet.name,
            self.strategy.value,
            wallet.usdc_balance,
            wallet.sol_balance,
        )
        return wallet

    async def has_insufficient_balance(self, wallet: WalletIdentity, required_usdc: float) -> bool:
        await self.refresh_balances(wallet)
        if wallet.usdc_balance < required_usdc:
            logger.warning("%s has %.2f USDC, %.2f required", wallet.name, wallet.usdc_balance, required_usdc)
            return True
        if wallet.sol_balance < self.min_sol_reserve:
            logger.warning("%s has %.4f SOL, below the %.4f reserve", wallet.name, wallet.sol_balance, self.min_sol_reserve)
            return True
        return False

    def record_trade(self, wallet: WalletIdentity, success: bool, profit: float = 0.0) -> None:
        wallet.total_trades += 1
        wallet.last_used = datetime.now(timezone.utc)
        if success:
            wallet.successful_trades += 1
            wallet.total_profit += profit
        else:
            wallet.failed_trades += 1

    def get_all_stats(self) -> list[dict]:
        return [
            {
                'name': wallet.name,
                'public_key': wallet.public_key,
                'sol_balance': wallet.sol_balance,
                'usdc_balance': wallet.usdc_balance,
                'total_trades': wallet.total_trades,
                'successful_trades': wallet.successful_trades,
                'failed_trades': wallet.failed_trades,
                'success_rate': wallet.success_rate,
                'total_profit': wallet.total_profit,
                'last_used': wallet.last_used.isoformat() if wallet.last_used else None,
            }
            for wallet in self._wallets
        ]

    def get_total_balances(self) -> dict:
        return {
            'sol': sum(wallet.sol_balance for wallet in self._wallets),
            'usdc': sum(wallet.usdc_balance for wallet in self._wallets),
        }

    def get_total_profit(self) -> float:
        return sum(wallet.total_profit for wallet in self._wallets)

    def format_summary(self) -> str:
        if not self._wallets:
            return "No wallets loaded."
        lines = [f"Wallets ({len(self._wallets)}, strategy={self.strategy.value})"]
        for stats in self.get_all_stats():
            key = stats['public_key']
            lines.append(
                f"  {stats['name']} {key[:4]}...{key[-4:]}: "
                f"{stats['usdc_balance']:.2f} USDC, {stats['sol_balance']:.4f} SOL, "
                f"{stats['successful_trades']}/{stats['total_trades']} ok ({stats['success_rate']:.0f}%), "
                f"P&L ${stats['total_profit']:.2f}"
            )
        totals = self.get_total_balances()
        lines.append(f"  Total: {totals['usdc']:.2f} USDC, {totals['sol']:.4f} SOL, P&L ${self.get_total_profit():.2f}")
        return "\n".join(lines)
