# -*- coding: utf-8 -*-
"""
Price Service Module

USD token price lookup through the Jupiter Price V3 API with a short-lived
in-memory cache. Mints without a known price are simply omitted from the
result; they are never reported as zero.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..config.settings import PRICE_BATCH_SIZE
from .errors import JupiterApiError
from .jupiter_client import JupiterClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenPrice:
    """USD price of one mint at a point in time."""
    mint: str
    usd_price: Decimal
    as_of: datetime


class PriceCache:
    """Simple in-memory cache with TTL support"""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._cache: Dict[str, Any] = {}
        self._timestamps: Dict[str, float] = {}
        self._clock = clock

    def get(self, key: str, ttl: int) -> Optional[Any]:
        """Get cached value if not expired"""
        if key in self._cache:
            if self._clock() - self._timestamps[key] < ttl:
                return self._cache[key]
            else:
                # Clean expired entry
                self._cache.pop(key, None)
                self._timestamps.pop(key, None)
        return None

    def set(self, key: str, value: Any) -> None:
        """Store value in cache with current timestamp"""
        self._cache[key] = value
        self._timestamps[key] = self._clock()


class JupiterPriceService:
    """Batched Price V3 lookups with per-mint caching"""

    def __init__(self, client: JupiterClient, cache_ttl: int = 60,
                 cache: Optional[PriceCache] = None,
                 batch_size: int = PRICE_BATCH_SIZE):
        self.client = client
        self.cache_ttl = cache_ttl
        self.cache = cache or PriceCache()
        self.batch_size = batch_size

    def get_price(self, mints: Iterable[str]) -> List[TokenPrice]:
        """
        Get current USD prices for the given mints.

        Errors from the API propagate to the caller; callers decide whether
        a missing price is fatal for them.
        """
        unique_mints = list(dict.fromkeys(m for m in mints if m))
        if not unique_mints:
            return []

        found: Dict[str, TokenPrice] = {}
        missing = []
        for mint in unique_mints:
            cached = self.cache.get(mint, self.cache_ttl)
            if cached is not None:
                found[mint] = cached
            else:
                missing.append(mint)

        if missing:
            logger.debug(f"Using cached prices for {len(found)} mints, fetching {len(missing)}")

        for start in range(0, len(missing), self.batch_size):
            batch = missing[start:start + self.batch_size]
            fetched = self._fetch_batch(batch)
            for price in fetched:
                self.cache.set(price.mint, price)
                found[price.mint] = price

        return [found[mint] for mint in unique_mints if mint in found]

    def _fetch_batch(self, mints: List[str]) -> List[TokenPrice]:
        logger.debug(f"Getting prices via Price V3 API for {len(mints)} mints")
        payload = self.client.get('/price/v3', params={'ids': ','.join(mints)}) or {}
        if not isinstance(payload, dict):
            raise JupiterApiError(f"unexpected price payload type: {type(payload).__name__}", 200)

        # Older responses wrap the mapping in a "data" key
        if isinstance(payload.get('data'), dict):
            payload = payload['data']

        as_of = datetime.now(timezone.utc)
        prices = []
        for mint in mints:
            entry = payload.get(mint)
            if not isinstance(entry, dict):
                continue
            raw = entry.get('usdPrice', entry.get('price'))
            if raw is None:
                continue
            try:
                usd_price = Decimal(str(raw))
            except InvalidOperation:
                logger.warning(f"Ignoring unparseable price for {mint}: {raw!r}")
                continue
            if not usd_price.is_finite():
                continue
            prices.append(TokenPrice(mint=mint, usd_price=usd_price, as_of=as_of))

        logger.info(f"Fetched prices for {len(prices)}/{len(mints)} mints")
        return prices
