"""
Trade Recording Service

Writes executed swaps and filled limit orders to the ledger, capturing a
best-effort USD valuation of both legs at recording time.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, localcontext
from typing import Dict, List, Optional, Tuple

import requests

from ...config.settings import STABLECOIN_MINTS
from ..errors import CollaboratorError
from .models import (
    LEDGER_CONTEXT, TradeKind, TradeLedgerEntry, ensure_utc, to_decimal, utc_now,
)

logger = logging.getLogger(__name__)

STABLECOIN_PRICE = Decimal('1')


@dataclass(frozen=True)
class TradeParams:
    """What the caller knows about an executed trade."""
    wallet_id: str
    input_mint: str
    output_mint: str
    input_amount: str
    output_amount: str
    signature: Optional[str] = None
    input_symbol: Optional[str] = None
    output_symbol: Optional[str] = None
    executed_at: Optional[datetime] = None


class TradeRecordingService:

    def __init__(self, store, price_provider, log: Optional[logging.Logger] = None):
        self.store = store
        self.price_provider = price_provider
        self.log = log or logger

    def record_swap(self, params: TradeParams) -> TradeLedgerEntry:
        """Record an executed swap. Called exactly once per swap, so no dedup."""
        stored, _ = self._record(params, TradeKind.SWAP)
        return stored

    def record_limit_fill(self, params: TradeParams) -> TradeLedgerEntry:
        """
        Record a filled limit order, once per settlement signature.

        Fills are discovered by polling and may be seen many times; a known
        signature returns the stored entry untouched.
        """
        existing = self.store.find_trade_by_signature(params.signature) if params.signature else None
        if existing is not None:
            self.log.debug(f"Limit fill {params.signature} already recorded")
            return existing
        stored, _ = self._record(params, TradeKind.LIMIT_FILL)
        return stored

    def record_new_limit_fill(self, params: TradeParams) -> Optional[TradeLedgerEntry]:
        """
        Record a filled limit order, returning None when its signature is
        already in the ledger, including when another writer stored it
        between the lookup and the insert.
        """
        if params.signature and self.store.find_trade_by_signature(params.signature) is not None:
            self.log.debug(f"Limit fill {params.signature} already recorded")
            return None
        stored, inserted = self._record(params, TradeKind.LIMIT_FILL)
        return stored if inserted else None

    def get_recent_trades(self, wallet_id: str, limit: int = 5) -> List[TradeLedgerEntry]:
        return self.store.find_trades_by_wallet(wallet_id, limit=limit, newest_first=True)

    def get_trade_history(self, wallet_id: str, mint: Optional[str] = None,
                          kind: Optional[TradeKind] = None, limit: Optional[int] = None,
                          offset: Optional[int] = None) -> Tuple[List[TradeLedgerEntry], int]:
        """One page of a wallet's trades, newest first, plus the total count."""
        trades = self.store.find_trades_by_wallet(
            wallet_id, mint=mint, kind=kind, limit=limit, offset=offset, newest_first=True,
        )
        total = self.store.count_trades_by_wallet(wallet_id, mint=mint, kind=kind)
        return trades, total

    def is_trade_recorded(self, signature: str) -> bool:
        return self.store.find_trade_by_signature(signature) is not None

    def _record(self, params: TradeParams, kind: TradeKind) -> Tuple[TradeLedgerEntry, bool]:
        """Build, value and insert an entry; the flag is False when the store kept an earlier one."""
        # Malformed amounts are a caller bug and must not be stored
        input_amount = to_decimal(params.input_amount, 'input_amount')
        output_amount = to_decimal(params.output_amount, 'output_amount')

        prices = self._resolve_prices([params.input_mint, params.output_mint])
        input_price = prices.get(params.input_mint)
        output_price = prices.get(params.output_mint)

        with localcontext(LEDGER_CONTEXT):
            input_value = input_amount * input_price if input_price is not None else None
            output_value = output_amount * output_price if output_price is not None else None

        entry = TradeLedgerEntry(
            wallet_id=params.wallet_id,
            input_mint=params.input_mint,
            output_mint=params.output_mint,
            input_amount=str(params.input_amount).strip(),
            output_amount=str(params.output_amount).strip(),
            kind=kind,
            executed_at=ensure_utc(params.executed_at) if params.executed_at else utc_now(),
            signature=params.signature or None,
            input_symbol=params.input_symbol,
            output_symbol=params.output_symbol,
            input_usd_price=_as_str(input_price),
            output_usd_price=_as_str(output_price),
            input_usd_value=_as_str(input_value),
            output_usd_value=_as_str(output_value),
        )

        if not entry.has_valuation:
            self.log.warning(f"Recording {kind.value} {entry.signature or entry.id} without full USD "
                             f"valuation; it will not count toward cost basis")

        stored = self.store.insert_trade(entry)
        return stored, stored.id == entry.id

    def _resolve_prices(self, mints: List[str]) -> Dict[str, Decimal]:
        """USD price per mint; a failing price source leaves only stablecoins priced."""
        prices: Dict[str, Decimal] = {}
        try:
            for price in self.price_provider.get_price(mints):
                prices[price.mint] = price.usd_price
        except (CollaboratorError, requests.exceptions.RequestException) as e:
            self.log.warning(f"Price fetch failed, recording without live prices: {e}")

        for mint in mints:
            if mint not in prices and mint in STABLECOIN_MINTS:
                prices[mint] = STABLECOIN_PRICE
        return prices


def _as_str(value: Optional[Decimal]) -> Optional[str]:
    if value is None:
        return None
    return format(value, 'f')
