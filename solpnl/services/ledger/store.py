"""
Trade ledger store.

``TradeStore`` keeps the ledger in memory with a signature index and
delegates loading and saving to subclasses. Insertion is idempotent on
the settlement signature: inserting an entry whose signature is already
stored returns the stored entry and writes nothing.
"""

import logging
import threading
from typing import Dict, List, Optional

from .models import TradeKind, TradeLedgerEntry

logger = logging.getLogger(__name__)


class TradeStore:
    """Base ledger store; subclasses implement ``_load_entries`` and ``_save_entries``."""

    def __init__(self):
        self._entries: List[TradeLedgerEntry] = []
        self._by_signature: Dict[str, TradeLedgerEntry] = {}
        self._loaded = False
        self._lock = threading.Lock()

    # Storage hooks

    def _load_entries(self) -> List[TradeLedgerEntry]:
        raise NotImplementedError

    def _save_entries(self, entries: List[TradeLedgerEntry]) -> None:
        raise NotImplementedError

    # Public interface

    def find_trades_by_wallet(self, wallet_id: str, mint: Optional[str] = None,
                              kind: Optional[TradeKind] = None,
                              limit: Optional[int] = None, offset: Optional[int] = None,
                              newest_first: bool = False) -> List[TradeLedgerEntry]:
        """
        Entries of one wallet ordered by execution time (oldest first unless
        ``newest_first``). ``mint`` matches either leg.
        """
        matches = self._filter(wallet_id, mint, kind)
        # Stable sort keeps insertion order for equal timestamps
        matches.sort(key=lambda e: e.executed_at, reverse=newest_first)

        start = offset or 0
        end = start + limit if limit is not None else None
        return matches[start:end]

    def count_trades_by_wallet(self, wallet_id: str, mint: Optional[str] = None,
                               kind: Optional[TradeKind] = None) -> int:
        return len(self._filter(wallet_id, mint, kind))

    def find_trade_by_signature(self, signature: str) -> Optional[TradeLedgerEntry]:
        if not signature:
            return None
        self._ensure_loaded()
        return self._by_signature.get(signature)

    def insert_trade(self, entry: TradeLedgerEntry) -> TradeLedgerEntry:
        self._ensure_loaded()
        with self._lock:
            if entry.signature and entry.signature in self._by_signature:
                logger.debug(f"Trade with signature {entry.signature} already stored")
                return self._by_signature[entry.signature]

            updated = self._entries + [entry]
            self._save_entries(updated)

            self._entries = updated
            if entry.signature:
                self._by_signature[entry.signature] = entry

        logger.info(f"Recorded {entry.kind.value} {entry.input_amount} {entry.input_mint[:8]} -> "
                    f"{entry.output_amount} {entry.output_mint[:8]} for wallet {entry.wallet_id}")
        return entry

    def _filter(self, wallet_id: str, mint: Optional[str], kind: Optional[TradeKind]) -> List[TradeLedgerEntry]:
        self._ensure_loaded()
        kind = TradeKind(kind) if kind is not None else None
        return [
            e for e in self._entries
            if e.wallet_id == wallet_id
            and (mint is None or e.touches(mint))
            and (kind is None or e.kind == kind)
        ]

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        with self._lock:
            if self._loaded:
                return
            entries = self._load_entries()
            self._entries = list(entries)
            self._by_signature = {}
            for e in self._entries:
                if e.signature and e.signature not in self._by_signature:
                    self._by_signature[e.signature] = e
            self._loaded = True


class InMemoryTradeStore(TradeStore):
    """Non-persistent store, used in tests and for one-off calculations."""

    def __init__(self, entries: Optional[List[TradeLedgerEntry]] = None):
        super().__init__()
        self._initial = list(entries or [])

    def _load_entries(self) -> List[TradeLedgerEntry]:
        return list(self._initial)

    def _save_entries(self, entries: List[TradeLedgerEntry]) -> None:
        self._initial = list(entries)
