"""
Token metadata resolver.

Resolves symbol and decimals for a mint from, in order: an in-process
cache, the well-known token table, the Jupiter token search API, and
finally the mint's on-chain supply account (decimals only).
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

import requests

from ..config.settings import KNOWN_TOKENS
from .errors import CollaboratorError
from .jupiter_client import JupiterClient
from .solana_rpc import SolanaRpcService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenInfo:
    mint: str
    decimals: int
    symbol: Optional[str] = None
    name: Optional[str] = None


class TokenInfoService:

    def __init__(self, client: Optional[JupiterClient] = None,
                 rpc: Optional[SolanaRpcService] = None):
        self.client = client
        self.rpc = rpc
        self._cache: Dict[str, TokenInfo] = {}

    def get_token_info(self, mint: str) -> Optional[TokenInfo]:
        if mint in self._cache:
            return self._cache[mint]

        info = self._known(mint) or self._fetch_from_api(mint) or self._fetch_from_chain(mint)
        if info is not None:
            self._cache[mint] = info
        return info

    def get_token_info_batch(self, mints: Iterable[str]) -> Dict[str, TokenInfo]:
        result = {}
        for mint in dict.fromkeys(mints):
            info = self.get_token_info(mint)
            if info is not None:
                result[mint] = info
        return result

    def get_symbol(self, mint: str) -> Optional[str]:
        info = self.get_token_info(mint)
        return info.symbol if info else None

    @staticmethod
    def _known(mint: str) -> Optional[TokenInfo]:
        known = KNOWN_TOKENS.get(mint)
        if not known:
            return None
        return TokenInfo(mint=mint, decimals=int(known['decimals']),
                         symbol=str(known['symbol']), name=str(known['name']))

    def _fetch_from_api(self, mint: str) -> Optional[TokenInfo]:
        if self.client is None:
            return None
        try:
            logger.debug(f"Fetching token info from API for {mint}")
            results = self.client.get('/tokens/v2/search', params={'query': mint}) or []
        except (CollaboratorError, requests.exceptions.RequestException) as e:
            logger.warning(f"Token info lookup failed for {mint}: {e}")
            return None

        for item in results:
            if isinstance(item, dict) and item.get('id') == mint and item.get('decimals') is not None:
                return TokenInfo(mint=mint, decimals=int(item['decimals']),
                                 symbol=item.get('symbol'), name=item.get('name'))
        return None

    def _fetch_from_chain(self, mint: str) -> Optional[TokenInfo]:
        if self.rpc is None:
            return None
        try:
            decimals = self.rpc.get_token_decimals(mint)
        except (CollaboratorError, KeyError, TypeError) as e:
            logger.warning(f"Could not read decimals for {mint} on chain: {e}")
            return None
        return TokenInfo(mint=mint, decimals=decimals)
