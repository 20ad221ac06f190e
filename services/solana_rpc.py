#!/usr/bin/env python3
"""Thin JSON-RPC client for the Solana calls the bot needs."""
import asyncio
import base64
import logging
import time
from collections import defaultdict
from typing import Any, Dict, Optional

import aiohttp
from solders.keypair import Keypair
from solders.transaction import VersionedTransaction

from constants import CONFIRMATION_POLL_INTERVAL, CONFIRMATION_TIMEOUT, LAMPORTS_PER_SOL

logger = logging.getLogger(__name__)

_CONFIRMED_STATUSES = {'confirmed', 'finalized'}


class SolanaRpcError(RuntimeError):
    """Raised when the RPC node returns an error object or a failed transaction."""


def sign_swap_transaction(swap_transaction: str, keypair: Keypair) -> bytes:
    """Signs a base64 versioned transaction and returns the serialized bytes."""
    unsigned = VersionedTransaction.from_bytes(base64.b64decode(swap_transaction))
    signed = VersionedTransaction(unsigned.message, [keypair])
    return bytes(signed)


class SolanaRpcClient:
    def __init__(self, session: aiohttp.ClientSession, rpc_url: str, timeout: float = 10.0) -> None:
        self._session = session
        self._rpc_url = rpc_url
        self._timeout = timeout
        self._id_lock = asyncio.Lock()
        self._next_request_id = 1

    async def get_balance(self, public_key: str) -> int:
        """Lamport balance of ``public_key``."""
        result = await self._rpc_call('getBalance', [public_key, {'commitment': 'confirmed'}])
        return int(result['value'])

    async def get_sol_balance(self, public_key: str) -> float:
        return await self.get_balance(public_key) / LAMPORTS_PER_SOL

    async def get_token_balance(self, owner: str, mint: str) -> float:
        """Sum of every token account ``owner`` holds for ``mint``."""
        result = await self._rpc_call(
            'getTokenAccountsByOwner',
            [owner, {'mint': mint}, {'encoding': 'jsonParsed', 'commitment': 'confirmed'}],
        )
        total = 0.0
        for account in result.get('value', []):
            token_amount = account['account']['data']['parsed']['info']['tokenAmount']
            total += _ui_amount(token_amount)
        return total

    async def send_transaction(self, raw_transaction: bytes) -> str:
        encoded = base64.b64encode(raw_transaction).decode('ascii')
        return await self._rpc_call(
            'sendTransaction',
            [
                encoded,
                {
                    'encoding': 'base64',
                    'skipPreflight': False,
                    'preflightCommitment': 'confirmed',
                    'maxRetries': 3,
                },
            ],
        )

    async def confirm_transaction(
        self,
        signature: str,
        timeout: float = CONFIRMATION_TIMEOUT,
        poll_interval: float = CONFIRMATION_POLL_INTERVAL,
    ) -> bool:
        """Polls until ``signature`` reaches confirmed commitment.

        Returns False on timeout and raises SolanaRpcError when the
        transaction landed with an error.
        """
        deadline = time.monotonic() + timeout
        while True:
            result = await self._rpc_call('getSignatureStatuses', [[signature], {'searchTransactionHistory': False}])
            statuses = result.get('value') or [None]
            status = statuses[0]
            if status is not None:
                if status.get('err'):
                    raise SolanaRpcError(f"Transaction {signature} failed: {status['err']}")
                if status.get('confirmationStatus') in _CONFIRMED_STATUSES:
                    return True
            if time.monotonic() >= deadline:
                logger.warning("Timed out waiting for confirmation of %s", signature)
                return False
            await asyncio.sleep(poll_interval)

    async def get_token_balance_changes(self, signature: str, owner: str) -> Optional[Dict[str, int]]:
        """Net change per mint, in smallest units, for ``owner``'s token accounts in a transaction."""
        result = await self._rpc_call(
            'getTransaction',
            [signature, {'encoding': 'jsonParsed', 'commitment': 'confirmed', 'maxSupportedTransactionVersion': 0}],
        )
        if not result or not result.get('meta'):
            return None
        meta = result['meta']
        changes: Dict[str, int] = defaultdict(int)
        for entry in meta.get('preTokenBalances') or []:
            if entry.get('owner') == owner:
                changes[entry['mint']] -= int(entry['uiTokenAmount']['amount'])
        for entry in meta.get('postTokenBalances') or []:
            if entry.get('owner') == owner:
                changes[entry['mint']] += int(entry['uiTokenAmount']['amount'])
        return dict(changes)

    async def _rpc_call(self, method: str, params: list) -> Any:
        request_id = await self._get_request_id()
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": request_id,
        }
        async with self._session.post(self._rpc_url, json=payload, timeout=aiohttp.ClientTimeout(total=self._timeout)) as response:
            response.raise_for_status()
            data = await response.json()
        if 'error' in data:
            raise SolanaRpcError(f"{method}: {data['error']}")
        return data.get('result')

    async def _get_request_id(self) -> int:
        async with self._id_lock:
            request_id = self._next_request_id
            self._next_request_id += 1
        return request_id


def _ui_amount(token_amount: Dict[str, Any]) -> float:
    if token_amount.get('uiAmount') is not None:
        return float(token_amount['uiAmount'])
    if token_amount.get('uiAmountString'):
        return float(token_amount['uiAmountString'])
    return int(token_amount.get('amount', 0)) / 10 ** int(token_amount.get('decimals', 0))
