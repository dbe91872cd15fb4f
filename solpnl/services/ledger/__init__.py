"""
Trade Ledger Module

Ledger storage, weighted-average cost basis accounting, PnL snapshots,
trade recording and limit order reconciliation.
"""

from .models import TradeKind, TradeLedgerEntry
from .store import TradeStore, InMemoryTradeStore
from .persistence_manager import ParquetTradeStore, S3TradeStore
from .cost_basis import (
    TokenCostBasis,
    CostBasisDiagnostic,
    fold_cost_basis,
    fold_cost_basis_with_diagnostics,
)
from .pnl_service import TokenPnL, PnLSnapshot, PnLService, compute_snapshot
from .trade_service import TradeParams, TradeRecordingService
from .order_sync import ActiveOrderQuote, OrderReconciliationService

__all__ = [
    'TradeKind',
    'TradeLedgerEntry',
    'TradeStore',
    'InMemoryTradeStore',
    'ParquetTradeStore',
    'S3TradeStore',
    'TokenCostBasis',
    'CostBasisDiagnostic',
    'fold_cost_basis',
    'fold_cost_basis_with_diagnostics',
    'TokenPnL',
    'PnLSnapshot',
    'PnLService',
    'compute_snapshot',
    'TradeParams',
    'TradeRecordingService',
    'ActiveOrderQuote',
    'OrderReconciliationService',
]
