"""
Weighted-Average Cost Basis Engine

Folds a wallet's trade ledger into per-mint cost state.

Every entry is a two-sided event: the output token is acquired at the
entry's output USD value and the input token is disposed of for the
entry's input USD value. Acquisitions blend into one running cost basis
per mint; a disposal removes cost in proportion to the quantity it takes
out of the remaining position, and books the difference to realized PnL.

Entries without a USD value on both legs are skipped: neither cost nor
proceeds can be attributed to them.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, localcontext
from typing import Dict, Iterable, List, Optional, Tuple

from .models import LEDGER_CONTEXT, ZERO, TradeLedgerEntry, to_decimal

logger = logging.getLogger(__name__)

OVER_DISPOSAL = 'over_disposal'
NEGATIVE_COST_BASIS = 'negative_cost_basis'


@dataclass
class TokenCostBasis:
    """Running cost state of one mint."""
    total_acquired: Decimal = ZERO
    total_disposed: Decimal = ZERO
    remaining_cost_basis: Decimal = ZERO
    realized_pnl: Decimal = ZERO

    @property
    def remaining_quantity(self) -> Decimal:
        return self.total_acquired - self.total_disposed


@dataclass(frozen=True)
class CostBasisDiagnostic:
    """
    A disposal that took more than the tracked position held.

    This usually means tokens entered the wallet outside the ledger
    (transfer, airdrop) or a trade was never recorded.
    """
    mint: str
    kind: str
    trade_id: str
    disposed_amount: Decimal
    tracked_quantity: Decimal
    remaining_cost_basis: Decimal

    def describe(self) -> str:
        if self.kind == OVER_DISPOSAL:
            return (f"{self.mint}: disposal of {self.disposed_amount} exceeds tracked quantity "
                    f"{self.tracked_quantity} (trade {self.trade_id})")
        return (f"{self.mint}: remaining cost basis is negative ({self.remaining_cost_basis}) "
                f"after trade {self.trade_id}")


def fold_cost_basis_with_diagnostics(
    entries: Iterable[TradeLedgerEntry],
    mint: Optional[str] = None,
    log: Optional[logging.Logger] = None,
) -> Tuple[Dict[str, TokenCostBasis], List[CostBasisDiagnostic]]:
    """
    Fold ledger entries into cost state per mint, reporting over-disposals.

    Args:
        entries: ledger of a single wallet, in any order
        mint: when given, only entries touching this mint are folded and
            only that mint's state is returned
        log: logger for diagnostics (module logger when omitted)

    Raises:
        ValueError: entries from more than one wallet were passed
        InvalidAmountError: an amount or USD value is not a decimal string
    """
    log = log or logger
    ledger = list(entries)

    wallets = {e.wallet_id for e in ledger}
    if len(wallets) > 1:
        raise ValueError(f"Cannot fold entries from several wallets together: {sorted(wallets)}")

    if mint is not None:
        ledger = [e for e in ledger if e.touches(mint)]

    # sorted() is stable: equal timestamps keep ledger order
    priced = sorted((e for e in ledger if e.has_valuation), key=lambda e: e.executed_at)
    skipped = len(ledger) - len(priced)
    if skipped:
        log.debug(f"Skipped {skipped} trades without USD valuation")

    costs: Dict[str, TokenCostBasis] = {}
    diagnostics: List[CostBasisDiagnostic] = []

    with localcontext(LEDGER_CONTEXT):
        for entry in priced:
            input_amount = to_decimal(entry.input_amount, 'input_amount')
            output_amount = to_decimal(entry.output_amount, 'output_amount')
            input_usd_value = to_decimal(entry.input_usd_value, 'input_usd_value')
            output_usd_value = to_decimal(entry.output_usd_value, 'output_usd_value')

            # Dispose first so a same-mint entry draws on the position held before it
            disposed = costs.setdefault(entry.input_mint, TokenCostBasis())
            remaining_qty = disposed.remaining_quantity

            if remaining_qty > 0 and input_amount > 0:
                ratio = input_amount / remaining_qty
                cost_removed = disposed.remaining_cost_basis * ratio
                disposed.realized_pnl += input_usd_value - cost_removed
                disposed.remaining_cost_basis -= cost_removed
                disposed.total_disposed += input_amount

                if ratio > 1:
                    diagnostics.append(_diagnostic(OVER_DISPOSAL, entry, input_amount, remaining_qty, disposed))
                if disposed.remaining_cost_basis < 0:
                    diagnostics.append(_diagnostic(NEGATIVE_COST_BASIS, entry, input_amount, remaining_qty, disposed))
            else:
                # Nothing tracked to draw cost from: proceeds are all gain
                disposed.realized_pnl += input_usd_value
                disposed.total_disposed += input_amount

            acquired = costs.setdefault(entry.output_mint, TokenCostBasis())
            acquired.total_acquired += output_amount
            acquired.remaining_cost_basis += output_usd_value

    for diagnostic in diagnostics:
        log.warning(f"Cost basis anomaly: {diagnostic.describe()}")

    if mint is not None:
        costs = {mint: costs[mint]} if mint in costs else {}

    return costs, diagnostics


def fold_cost_basis(entries: Iterable[TradeLedgerEntry], mint: Optional[str] = None,
                    log: Optional[logging.Logger] = None) -> Dict[str, TokenCostBasis]:
    """Fold ledger entries into cost state per mint."""
    costs, _ = fold_cost_basis_with_diagnostics(entries, mint=mint, log=log)
    return costs


def _diagnostic(kind: str, entry: TradeLedgerEntry, amount: Decimal, tracked: Decimal,
                state: TokenCostBasis) -> CostBasisDiagnostic:
    return CostBasisDiagnostic(
        mint=entry.input_mint,
        kind=kind,
        trade_id=entry.id,
        disposed_amount=amount,
        tracked_quantity=tracked,
        remaining_cost_basis=state.remaining_cost_basis,
    )
