"""
Jupiter Trigger (limit order) API service.

Reads a wallet's limit orders and normalizes them into ``TriggerOrder``
records. Amounts stay in raw base units; converting them with the token
decimals is the caller's job.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import pandas as pd

from .errors import JupiterApiError
from .jupiter_client import JupiterClient

logger = logging.getLogger(__name__)

MAX_PAGES = 50


class OrderStatus(str, Enum):
    ACTIVE = 'active'
    FILLED = 'filled'
    CANCELLED = 'cancelled'
    EXPIRED = 'expired'
    UNKNOWN = 'unknown'


_STATUS_ALIASES = {
    'active': OrderStatus.ACTIVE,
    'open': OrderStatus.ACTIVE,
    'filled': OrderStatus.FILLED,
    'completed': OrderStatus.FILLED,
    'cancelled': OrderStatus.CANCELLED,
    'canceled': OrderStatus.CANCELLED,
    'expired': OrderStatus.EXPIRED,
}


def normalize_status(raw: Optional[str]) -> OrderStatus:
    return _STATUS_ALIASES.get((raw or '').strip().lower(), OrderStatus.UNKNOWN)


@dataclass(frozen=True)
class TriggerOrder:
    order_key: str
    input_mint: str
    output_mint: str
    raw_input_amount: int
    raw_output_amount: int
    status: OrderStatus
    settlement_signature: Optional[str] = None
    created_at: Optional[datetime] = None
    filled_at: Optional[datetime] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'TriggerOrder':
        """Build from one entry of the ``orders`` array."""
        trades = [t for t in data.get('trades') or [] if isinstance(t, dict)]

        status = normalize_status(data.get('status'))
        raw_in = _raw_amount(data, 'rawMakingAmount', 'makingAmount')
        raw_out = _raw_amount(data, 'rawTakingAmount', 'takingAmount')
        # Executed amounts of a filled order can differ from the requested ones;
        # open orders keep their requested amounts
        if status is OrderStatus.FILLED and trades and all(
                t.get('rawInputAmount') is not None and t.get('rawOutputAmount') is not None
                for t in trades):
            raw_in = sum(int(t['rawInputAmount']) for t in trades)
            raw_out = sum(int(t['rawOutputAmount']) for t in trades)

        signature = data.get('signature')
        if not signature and trades:
            signature = trades[-1].get('txId')

        filled_at = data.get('filledAt')
        if not filled_at and trades:
            filled_at = trades[-1].get('confirmedAt')
        if not filled_at and status is OrderStatus.FILLED:
            filled_at = data.get('updatedAt')

        return cls(
            order_key=str(data.get('orderKey') or data.get('id') or data.get('orderId') or ''),
            input_mint=data['inputMint'],
            output_mint=data['outputMint'],
            raw_input_amount=raw_in,
            raw_output_amount=raw_out,
            status=status,
            settlement_signature=signature or None,
            created_at=_parse_time(data.get('createdAt')),
            filled_at=_parse_time(filled_at),
        )


class TriggerOrderService:
    """Read-only access to Jupiter Trigger API orders"""

    def __init__(self, client: JupiterClient, max_pages: int = MAX_PAGES):
        self.client = client
        self.max_pages = max_pages

    def get_orders(self, wallet_address: str, status: str = 'history') -> List[TriggerOrder]:
        """
        Fetch all orders for a wallet.

        ``status`` is the API's ``orderStatus`` filter: ``active`` or
        ``history`` (filled, cancelled and expired orders). All pages are
        followed until ``hasMoreData`` is false.
        """
        orders: List[TriggerOrder] = []
        page = 1
        while page <= self.max_pages:
            response = self.client.get('/trigger/v1/getTriggerOrders', params={
                'user': wallet_address,
                'orderStatus': status,
                'page': page,
            }) or {}
            if not isinstance(response, dict):
                raise JupiterApiError(f"unexpected trigger orders payload type: {type(response).__name__}", 200)

            for raw in response.get('orders') or []:
                if not isinstance(raw, dict):
                    continue
                try:
                    orders.append(TriggerOrder.from_api(raw))
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning(f"Skipping malformed trigger order {raw.get('orderKey', '?')}: {e}")

            if not response.get('hasMoreData'):
                break
            page += 1
        else:
            logger.warning(f"Stopped paging trigger orders for {wallet_address} after {self.max_pages} pages")

        logger.debug(f"Fetched {len(orders)} {status} trigger orders for {wallet_address}")
        return orders


def _raw_amount(data: Dict[str, Any], raw_key: str, fallback_key: str) -> int:
    value = data.get(raw_key)
    if value is None:
        value = data.get(fallback_key)
    if value is None:
        raise ValueError(f"order has neither {raw_key} nor {fallback_key}")
    return int(str(value))


def _parse_time(value: Any) -> Optional[datetime]:
    if not value:
        return None
    ts = pd.to_datetime(value, utc=True, errors='coerce')
    if pd.isna(ts):
        return None
    return ts.to_pydatetime()
