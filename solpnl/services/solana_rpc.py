"""
Solana RPC Service

Reads native and SPL token balances for a wallet over Solana JSON-RPC,
with automatic retry and timeout.
"""

import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, List, Optional

import requests

from ..config.settings import (
    TrackerConfig, LAMPORTS_PER_SOL, RETRY_BASE_DELAY,
    TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID,
)
from .errors import NetworkError, RpcError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenBalance:
    mint: str
    ui_amount: Decimal
    decimals: int


@dataclass(frozen=True)
class WalletBalances:
    address: str
    native_balance: Decimal
    tokens: List[TokenBalance] = field(default_factory=list)


class SolanaRpcService:
    """
    Service for reading wallet balances from a Solana RPC node.
    """

    def __init__(self, config: TrackerConfig, session: Optional[requests.Session] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.rpc_url = config.solana_rpc_url
        self.timeout = config.request_timeout
        self.max_retries = config.max_retries
        self.session = session or requests.Session()
        self._sleep = sleep
        self._request_id = 0

    def get_token_balances(self, address: str) -> WalletBalances:
        """
        Get SOL balance and all non-zero SPL token balances for a wallet.

        Both the classic token program and Token-2022 are scanned; a mint
        held in several token accounts is summed.
        """
        logger.debug(f"Fetching token accounts via Solana RPC for {address}")

        balances = {}
        decimals_by_mint = {}
        for program_id in (TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID):
            result = self.call('getTokenAccountsByOwner', [
                address,
                {'programId': program_id},
                {'encoding': 'jsonParsed'},
            ])
            for account in (result or {}).get('value') or []:
                info = _parsed_info(account)
                if not info:
                    continue
                token_amount = info.get('tokenAmount') or {}
                ui_amount = _ui_amount(token_amount)
                if ui_amount <= 0:
                    continue
                mint = info['mint']
                balances[mint] = balances.get(mint, Decimal('0')) + ui_amount
                decimals_by_mint[mint] = int(token_amount.get('decimals', 0))

        lamports = (self.call('getBalance', [address]) or {}).get('value', 0)
        native_balance = Decimal(int(lamports)) / Decimal(LAMPORTS_PER_SOL)

        tokens = [
            TokenBalance(mint=mint, ui_amount=amount, decimals=decimals_by_mint[mint])
            for mint, amount in balances.items()
        ]
        logger.info(f"Found {len(tokens)} tokens via Solana RPC for {address}")

        return WalletBalances(address=address, native_balance=native_balance, tokens=tokens)

    def get_token_decimals(self, mint: str) -> int:
        """Decimals of a mint, read from its supply account."""
        result = self.call('getTokenSupply', [mint])
        return int(result['value']['decimals'])

    def call(self, method: str, params: List[Any]) -> Any:
        """Call a JSON-RPC method with retry on transport failures"""
        attempt = 0
        while True:
            try:
                return self._call_once(method, params)
            except NetworkError:
                if attempt >= self.max_retries:
                    logger.error(f"RPC {method} failed after {self.max_retries} retries")
                    raise
                delay = RETRY_BASE_DELAY * (2 ** attempt)
                attempt += 1
                logger.warning(f"RPC {method} failed, retrying in {delay:.1f}s "
                               f"(attempt {attempt}/{self.max_retries})")
                self._sleep(delay)

    def _call_once(self, method: str, params: List[Any]) -> Any:
        self._request_id += 1
        body = {'jsonrpc': '2.0', 'id': self._request_id, 'method': method, 'params': params}
        try:
            response = self.session.post(self.rpc_url, json=body, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            raise NetworkError(f"{self.rpc_url}/{method}", e) from e

        if data.get('error'):
            error = data['error']
            raise RpcError(method, error.get('code'), error.get('message', 'unknown error'))

        return data.get('result')


def _parsed_info(account: dict) -> Optional[dict]:
    data = (account.get('account') or {}).get('data')
    if not isinstance(data, dict):
        return None
    parsed = data.get('parsed')
    if not isinstance(parsed, dict):
        return None
    return parsed.get('info')


def _ui_amount(token_amount: dict) -> Decimal:
    if token_amount.get('uiAmountString') is not None:
        return Decimal(token_amount['uiAmountString'])
    if token_amount.get('amount') is not None:
        return Decimal(int(token_amount['amount'])).scaleb(-int(token_amount.get('decimals', 0)))
    return Decimal(str(token_amount.get('uiAmount') or 0))
