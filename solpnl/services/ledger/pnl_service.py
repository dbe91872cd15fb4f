# -*- coding: utf-8 -*-
"""
PnL Snapshot Engine

Combines folded cost state with live balances and live prices into a
point-in-time profit/loss snapshot for one wallet.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from decimal import Decimal, localcontext
from typing import Any, Dict, List, Mapping, Optional

import requests

from ...config.settings import SOL_MINT
from ..errors import CollaboratorError
from .cost_basis import CostBasisDiagnostic, TokenCostBasis, fold_cost_basis_with_diagnostics
from .models import LEDGER_CONTEXT, ZERO

logger = logging.getLogger(__name__)

HUNDRED = Decimal('100')


@dataclass(frozen=True)
class TokenPnL:
    """PnL line for one mint held live."""
    mint: str
    balance: Decimal
    current_price: Decimal
    current_value: Decimal
    avg_cost: Decimal
    total_cost: Decimal
    unrealized_pnl: Decimal
    unrealized_pnl_percent: Decimal
    realized_pnl: Decimal
    tracked: bool
    symbol: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'mint': self.mint,
            'symbol': self.symbol,
            'balance': str(self.balance),
            'current_price': str(self.current_price),
            'current_value': str(self.current_value),
            'avg_cost': str(self.avg_cost),
            'total_cost': str(self.total_cost),
            'unrealized_pnl': str(self.unrealized_pnl),
            'unrealized_pnl_percent': str(self.unrealized_pnl_percent),
            'realized_pnl': str(self.realized_pnl),
            'tracked': self.tracked,
        }


@dataclass(frozen=True)
class PnLSnapshot:
    """Portfolio-level PnL for one wallet at one point in time."""
    tokens: List[TokenPnL]
    total_value: Decimal
    total_cost: Decimal
    total_unrealized_pnl: Decimal
    total_unrealized_pnl_percent: Decimal
    total_realized_pnl: Decimal
    untracked_tokens: List[str]
    diagnostics: List[CostBasisDiagnostic] = field(default_factory=list)

    def token(self, mint: str) -> Optional[TokenPnL]:
        for token in self.tokens:
            if token.mint == mint:
                return token
        return None


def compute_snapshot(cost_by_mint: Mapping[str, TokenCostBasis],
                     live_balances: Mapping[str, Decimal],
                     current_prices: Mapping[str, Decimal],
                     symbols: Optional[Mapping[str, str]] = None,
                     diagnostics: Optional[List[CostBasisDiagnostic]] = None) -> PnLSnapshot:
    """
    Value every live balance and attach its cost state.

    A mint without cost state is untracked: it counts toward total value
    but carries no cost or PnL. Unrealized PnL is measured against the
    remaining cost basis as a whole rather than average cost times live
    balance, because the live balance can drift from the ledger-implied
    quantity.

    Realized PnL of positions that are fully exited (cost state but no live
    balance) is added to the portfolio total only when positive.
    """
    symbols = symbols or {}
    tokens: List[TokenPnL] = []
    untracked: List[str] = []
    total_value = ZERO
    total_cost = ZERO
    total_unrealized = ZERO
    total_realized = ZERO

    with localcontext(LEDGER_CONTEXT):
        for mint, balance in live_balances.items():
            balance = Decimal(balance)
            current_price = Decimal(current_prices.get(mint) or ZERO)
            current_value = balance * current_price
            total_value += current_value

            cost = cost_by_mint.get(mint)
            if cost is None:
                untracked.append(mint)
                tokens.append(TokenPnL(
                    mint=mint, symbol=symbols.get(mint), balance=balance,
                    current_price=current_price, current_value=current_value,
                    avg_cost=ZERO, total_cost=ZERO, unrealized_pnl=ZERO,
                    unrealized_pnl_percent=ZERO, realized_pnl=ZERO, tracked=False,
                ))
                continue

            remaining_qty = cost.remaining_quantity
            avg_cost = cost.remaining_cost_basis / remaining_qty if remaining_qty > 0 else ZERO
            unrealized = current_value - cost.remaining_cost_basis
            unrealized_pct = (unrealized / cost.remaining_cost_basis * HUNDRED
                              if cost.remaining_cost_basis > 0 else ZERO)

            total_cost += cost.remaining_cost_basis
            total_unrealized += unrealized
            total_realized += cost.realized_pnl

            tokens.append(TokenPnL(
                mint=mint, symbol=symbols.get(mint), balance=balance,
                current_price=current_price, current_value=current_value,
                avg_cost=avg_cost, total_cost=cost.remaining_cost_basis,
                unrealized_pnl=unrealized, unrealized_pnl_percent=unrealized_pct,
                realized_pnl=cost.realized_pnl, tracked=True,
            ))

        # Closed positions: only gains reach the portfolio total
        for mint, cost in cost_by_mint.items():
            if mint not in live_balances and cost.realized_pnl > 0:
                total_realized += cost.realized_pnl

        total_unrealized_pct = total_unrealized / total_cost * HUNDRED if total_cost > 0 else ZERO

    return PnLSnapshot(
        tokens=tokens,
        total_value=total_value,
        total_cost=total_cost,
        total_unrealized_pnl=total_unrealized,
        total_unrealized_pnl_percent=total_unrealized_pct,
        total_realized_pnl=total_realized,
        untracked_tokens=untracked,
        diagnostics=list(diagnostics or []),
    )


class PnLService:
    """
    Builds a PnL snapshot for one wallet from its ledger, its on-chain
    balances and current prices.
    """

    def __init__(self, store, balance_reader, price_provider, token_info=None,
                 log: Optional[logging.Logger] = None):
        self.store = store
        self.balance_reader = balance_reader
        self.price_provider = price_provider
        self.token_info = token_info
        self.log = log or logger

    def calculate_pnl(self, wallet_id: str, wallet_address: str, mint: Optional[str] = None) -> PnLSnapshot:
        # Ledger read and balance read are independent
        with ThreadPoolExecutor(max_workers=2) as executor:
            trades_future = executor.submit(self.store.find_trades_by_wallet, wallet_id, mint=mint)
            balances_future = executor.submit(self.balance_reader.get_token_balances, wallet_address)
            trades = trades_future.result()
            wallet = balances_future.result()

        costs, diagnostics = fold_cost_basis_with_diagnostics(trades, mint=mint, log=self.log)

        balances: Dict[str, Decimal] = {}
        if wallet.native_balance > 0:
            balances[SOL_MINT] = wallet.native_balance
        for token in wallet.tokens:
            balances[token.mint] = token.ui_amount
        if mint is not None:
            balances = {m: b for m, b in balances.items() if m == mint}

        prices = self._fetch_prices(list(balances))
        symbols = self._symbols(list(balances), trades)

        snapshot = compute_snapshot(costs, balances, prices, symbols=symbols, diagnostics=diagnostics)
        self.log.info(f"PnL for wallet {wallet_id}: value ${snapshot.total_value:.2f}, "
                      f"{len(snapshot.tokens)} tokens, {len(snapshot.untracked_tokens)} untracked")
        return snapshot

    def _fetch_prices(self, mints: List[str]) -> Dict[str, Decimal]:
        if not mints:
            return {}
        try:
            return {p.mint: p.usd_price for p in self.price_provider.get_price(mints)}
        except (CollaboratorError, requests.exceptions.RequestException) as e:
            self.log.warning(f"Prices unavailable, valuing holdings at 0: {e}")
            return {}

    def _symbols(self, mints: List[str], trades) -> Dict[str, str]:
        symbols: Dict[str, str] = {}
        for trade in trades:
            if trade.input_symbol:
                symbols.setdefault(trade.input_mint, trade.input_symbol)
            if trade.output_symbol:
                symbols.setdefault(trade.output_mint, trade.output_symbol)
        if self.token_info is not None:
            for mint in mints:
                if mint not in symbols:
                    symbol = self.token_info.get_symbol(mint)
                    if symbol:
                        symbols[mint] = symbol
        return symbols
