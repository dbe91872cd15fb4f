"""
Tracker Configuration Module

Contains Solana and Jupiter constants, well-known token tables, and the
runtime configuration object loaded from the environment.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional

from dotenv import load_dotenv

# Wrapped SOL mint; native SOL balances are reported under this key
SOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDT_MINT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"
PYUSD_MINT = "2WMgWtgG5vY7bZcPtbZznvEJWSh4rk1SSpHoegLtha7X"

# Mints priced at $1.00 when the price source has no entry for them
STABLECOIN_MINTS = frozenset({USDC_MINT, USDT_MINT, PYUSD_MINT})

LAMPORTS_PER_SOL = 1_000_000_000

# SPL token programs scanned for wallet balances
TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"

# Known token metadata (symbol, name, decimals)
KNOWN_TOKENS: Dict[str, Dict[str, object]] = {
    SOL_MINT: {"symbol": "SOL", "name": "Solana", "decimals": 9},
    USDC_MINT: {"symbol": "USDC", "name": "USD Coin", "decimals": 6},
    USDT_MINT: {"symbol": "USDT", "name": "Tether USD", "decimals": 6},
    PYUSD_MINT: {"symbol": "PYUSD", "name": "PayPal USD", "decimals": 6},
    "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263": {"symbol": "BONK", "name": "Bonk", "decimals": 5},
    "JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN": {"symbol": "JUP", "name": "Jupiter", "decimals": 6},
}

# API endpoints
JUPITER_BASE_URL = "https://lite-api.jup.ag"
SOLANA_RPC_URL = "https://api.mainnet-beta.solana.com"

# Network settings
REQUEST_TIMEOUT = 10  # seconds
MAX_RETRIES = 3
RETRY_BASE_DELAY = 1.0  # seconds, doubled on each retry
PRICE_BATCH_SIZE = 50  # ids per Price V3 request
CACHE_TTL_PRICES = 60  # seconds

DEFAULT_LEDGER_PATH = Path.home() / ".solpnl" / "trades.parquet"
DEFAULT_S3_PREFIX = "solpnl"


def _env_bool(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class TrackerConfig:
    """Runtime settings, passed explicitly to every service that needs them."""
    jupiter_base_url: str = JUPITER_BASE_URL
    jupiter_api_key: Optional[str] = None
    solana_rpc_url: str = SOLANA_RPC_URL
    request_timeout: float = REQUEST_TIMEOUT
    max_retries: int = MAX_RETRIES
    ledger_path: Path = DEFAULT_LEDGER_PATH
    s3_bucket: Optional[str] = None
    s3_prefix: str = DEFAULT_S3_PREFIX
    price_cache_ttl: int = CACHE_TTL_PRICES
    debug: bool = False

    @classmethod
    def from_env(cls, env_file: Optional[str] = None,
                 environ: Optional[Mapping[str, str]] = None) -> "TrackerConfig":
        """
        Build a config from environment variables.

        A ``.env`` file is loaded first (without overriding variables that
        are already set). Passing ``environ`` skips ``.env`` loading and
        reads only from that mapping.
        """
        if environ is None:
            load_dotenv(env_file)
            environ = os.environ

        ledger_path = environ.get("SOLPNL_LEDGER_PATH")

        return cls(
            jupiter_base_url=environ.get("SOLPNL_JUPITER_BASE_URL", JUPITER_BASE_URL).rstrip("/"),
            jupiter_api_key=environ.get("SOLPNL_JUPITER_API_KEY") or None,
            solana_rpc_url=environ.get("SOLPNL_SOLANA_RPC_URL", SOLANA_RPC_URL),
            request_timeout=float(environ.get("SOLPNL_HTTP_TIMEOUT", REQUEST_TIMEOUT)),
            max_retries=int(environ.get("SOLPNL_MAX_RETRIES", MAX_RETRIES)),
            ledger_path=Path(ledger_path).expanduser() if ledger_path else DEFAULT_LEDGER_PATH,
            s3_bucket=environ.get("SOLPNL_S3_BUCKET") or None,
            s3_prefix=environ.get("SOLPNL_S3_PREFIX", DEFAULT_S3_PREFIX),
            price_cache_ttl=int(environ.get("SOLPNL_PRICE_CACHE_TTL", CACHE_TTL_PRICES)),
            debug=_env_bool(environ.get("SOLPNL_DEBUG")),
        )
