"""
Order Reconciliation Service

Polls the order book for filled limit orders and records each fill in the
ledger once. Safe to run repeatedly; a run that cannot reach the order
book records nothing and reports zero.

Also prices a wallet's open orders against the market so the distance to
each order's target can be shown.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, localcontext
from typing import Dict, List, Optional

import requests

from ...config.settings import STABLECOIN_MINTS
from ..errors import CollaboratorError, SolPnLError
from ..order_book import OrderStatus, TriggerOrder
from .models import LEDGER_CONTEXT, ZERO
from .trade_service import STABLECOIN_PRICE, TradeParams, TradeRecordingService

logger = logging.getLogger(__name__)

HUNDRED = Decimal('100')


@dataclass(frozen=True)
class ActiveOrderQuote:
    """An open limit order next to the current market rate of its pair."""
    order: TriggerOrder
    input_symbol: Optional[str]
    output_symbol: Optional[str]
    input_amount: Decimal
    output_amount: Decimal
    # Both prices are output tokens per input token
    target_price: Decimal
    current_price: Decimal
    diff_percent: Decimal
    direction: str
    input_usd_value: Decimal


class OrderReconciliationService:

    def __init__(self, order_book, recorder: TradeRecordingService, token_info,
                 log: Optional[logging.Logger] = None, price_provider=None):
        self.order_book = order_book
        self.recorder = recorder
        self.token_info = token_info
        self.log = log or logger
        self.price_provider = price_provider or recorder.price_provider

    def sync_filled_orders(self, wallet_id: str, wallet_address: str) -> int:
        """
        Record every filled order not yet in the ledger.

        Returns:
            Number of newly recorded fills (already-known fills not counted)
        """
        try:
            orders = self.order_book.get_orders(wallet_address, 'history')
        except (CollaboratorError, requests.exceptions.RequestException) as e:
            self.log.warning(f"Order sync skipped, order book unreachable: {e}")
            return 0

        filled = [o for o in orders if o.status == OrderStatus.FILLED]
        self.log.debug(f"{len(filled)} of {len(orders)} historical orders are filled")

        recorded = 0
        for order in filled:
            if not order.settlement_signature:
                self.log.warning(f"Filled order {order.order_key} has no settlement signature, skipping")
                continue
            if self.recorder.is_trade_recorded(order.settlement_signature):
                continue
            try:
                entry = self.recorder.record_new_limit_fill(self._to_params(wallet_id, order))
            except (SolPnLError, ValueError) as e:
                self.log.error(f"Failed to record fill {order.settlement_signature}: {e}")
                continue
            if entry is None:
                self.log.debug(f"Fill {order.settlement_signature} was stored concurrently")
                continue
            recorded += 1

        if recorded:
            self.log.info(f"Synced {recorded} new limit order fills for wallet {wallet_id}")
        return recorded

    def active_orders_with_prices(self, wallet_address: str) -> List[ActiveOrderQuote]:
        """
        Open orders of a wallet with their target and current rates.

        ``diff_percent`` is how far the market must move to reach the
        target; ``direction`` is ``up`` when the target is at or above the
        current rate. Without a price for the output mint the current rate
        and the difference are zero. Orders whose token decimals cannot be
        resolved are left out. Order book errors propagate.
        """
        orders = [o for o in self.order_book.get_orders(wallet_address, 'active')
                  if o.status in (OrderStatus.ACTIVE, OrderStatus.UNKNOWN)]
        if not orders:
            return []

        mints = list(dict.fromkeys(m for o in orders for m in (o.input_mint, o.output_mint)))
        prices = self._current_prices(mints)
        infos = self.token_info.get_token_info_batch(mints)

        quotes = []
        for order in orders:
            input_info = infos.get(order.input_mint)
            output_info = infos.get(order.output_mint)
            if input_info is None or output_info is None:
                missing = order.input_mint if input_info is None else order.output_mint
                self.log.warning(f"Skipping active order {order.order_key}: decimals unknown for {missing}")
                continue
            quotes.append(self._quote(order, input_info, output_info, prices))

        self.log.debug(f"Priced {len(quotes)} of {len(orders)} active orders for {wallet_address}")
        return quotes

    def _quote(self, order: TriggerOrder, input_info, output_info,
               prices: Dict[str, Decimal]) -> ActiveOrderQuote:
        input_amount = Decimal(_to_ui_amount(order.raw_input_amount, input_info.decimals))
        output_amount = Decimal(_to_ui_amount(order.raw_output_amount, output_info.decimals))
        input_price = prices.get(order.input_mint, ZERO)
        output_price = prices.get(order.output_mint, ZERO)

        with localcontext(LEDGER_CONTEXT):
            target_price = output_amount / input_amount if input_amount > 0 else ZERO
            current_price = input_price / output_price if output_price > 0 else ZERO
            if current_price > 0:
                diff_percent = (target_price - current_price) / current_price * HUNDRED
            else:
                diff_percent = ZERO
            input_usd_value = input_amount * input_price

        return ActiveOrderQuote(
            order=order,
            input_symbol=input_info.symbol,
            output_symbol=output_info.symbol,
            input_amount=input_amount,
            output_amount=output_amount,
            target_price=target_price,
            current_price=current_price,
            diff_percent=diff_percent,
            direction='up' if diff_percent >= 0 else 'down',
            input_usd_value=input_usd_value,
        )

    def _current_prices(self, mints: List[str]) -> Dict[str, Decimal]:
        prices: Dict[str, Decimal] = {}
        try:
            for price in self.price_provider.get_price(mints):
                prices[price.mint] = price.usd_price
        except (CollaboratorError, requests.exceptions.RequestException) as e:
            self.log.warning(f"Price fetch failed, active orders shown without market rates: {e}")

        for mint in mints:
            if mint not in prices and mint in STABLECOIN_MINTS:
                prices[mint] = STABLECOIN_PRICE
        return prices

    def _to_params(self, wallet_id: str, order: TriggerOrder) -> TradeParams:
        input_info = self.token_info.get_token_info(order.input_mint)
        output_info = self.token_info.get_token_info(order.output_mint)
        if input_info is None or output_info is None:
            missing = order.input_mint if input_info is None else order.output_mint
            raise SolPnLError(f"decimals unknown for mint {missing}")

        return TradeParams(
            wallet_id=wallet_id,
            input_mint=order.input_mint,
            output_mint=order.output_mint,
            input_amount=_to_ui_amount(order.raw_input_amount, input_info.decimals),
            output_amount=_to_ui_amount(order.raw_output_amount, output_info.decimals),
            signature=order.settlement_signature,
            input_symbol=input_info.symbol,
            output_symbol=output_info.symbol,
            executed_at=order.filled_at,
        )


def _to_ui_amount(raw: int, decimals: int) -> str:
    """Exact conversion of base units to a decimal string."""
    return format(Decimal(int(raw)).scaleb(-decimals), 'f')
