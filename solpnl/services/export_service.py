# -*- coding: utf-8 -*-
"""
Export Service Module

Tabular views of trade history and PnL snapshots for display and CSV
export. Decimal figures are written as exact strings, never floats.
"""

import logging
from pathlib import Path
from typing import List, Union

import pandas as pd

from .ledger.models import TradeLedgerEntry
from .ledger.pnl_service import PnLSnapshot

logger = logging.getLogger(__name__)

TRADE_EXPORT_COLUMNS = {
    'executed_at': 'Executed At (UTC)',
    'kind': 'Type',
    'input_symbol': 'Input Symbol',
    'input_mint': 'Input Mint',
    'input_amount': 'Input Amount',
    'output_symbol': 'Output Symbol',
    'output_mint': 'Output Mint',
    'output_amount': 'Output Amount',
    'input_usd_value': 'Input USD Value',
    'output_usd_value': 'Output USD Value',
    'signature': 'Signature',
}

SNAPSHOT_EXPORT_COLUMNS = {
    'symbol': 'Symbol',
    'mint': 'Mint',
    'balance': 'Balance',
    'avg_cost': 'Avg Cost (USD)',
    'current_price': 'Current Price (USD)',
    'current_value': 'Value (USD)',
    'total_cost': 'Cost Basis (USD)',
    'unrealized_pnl': 'Unrealized P&L (USD)',
    'unrealized_pnl_percent': 'Unrealized P&L (%)',
    'realized_pnl': 'Realized P&L (USD)',
    'tracked': 'Tracked',
}


def trades_to_frame(trades: List[TradeLedgerEntry]) -> pd.DataFrame:
    """Trade history as a DataFrame with human-readable column names."""
    rows = [t.to_dict() for t in trades]
    df = pd.DataFrame(rows, columns=list(TRADE_EXPORT_COLUMNS))
    if not df.empty:
        df['executed_at'] = pd.to_datetime(df['executed_at'], utc=True).dt.strftime('%Y-%m-%d %H:%M:%S')
    return df.rename(columns=TRADE_EXPORT_COLUMNS)


def snapshot_to_frame(snapshot: PnLSnapshot) -> pd.DataFrame:
    """One row per token in the snapshot."""
    rows = [t.to_dict() for t in snapshot.tokens]
    df = pd.DataFrame(rows, columns=list(SNAPSHOT_EXPORT_COLUMNS))
    return df.rename(columns=SNAPSHOT_EXPORT_COLUMNS)


def export_csv(df: pd.DataFrame, path: Union[str, Path]) -> Path:
    path = Path(path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
    logger.info(f"Exported {len(df)} rows to {path}")
    return path
