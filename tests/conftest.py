"""
Shared fixtures and fakes for the solpnl tests.
"""
import itertools
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from solpnl.config.settings import TrackerConfig
from solpnl.services.jupiter_client import JupiterClient
from solpnl.services.ledger import InMemoryTradeStore, TradeKind, TradeLedgerEntry
from solpnl.services.price_service import JupiterPriceService, TokenPrice
from solpnl.services.solana_rpc import TokenBalance, WalletBalances

SOL = "So11111111111111111111111111111111111111112"
USDC = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
BONK = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"
TOKEN_X = "XxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxX"
TOKEN_Y = "YyyyyyyyyyyyyyyyyyyyyyyyyyyyyyyyyyyyyyyyyyY"

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


class EntryFactory:
    """Builds valued ledger entries with increasing timestamps."""

    def __init__(self, wallet_id="w1"):
        self.wallet_id = wallet_id
        self._counter = itertools.count()

    def __call__(self, input_mint, output_mint, input_amount, output_amount,
                 input_usd_value, output_usd_value=None, executed_at=None, **kwargs):
        n = next(self._counter)
        if output_usd_value is None:
            output_usd_value = input_usd_value
        return TradeLedgerEntry(
            wallet_id=kwargs.pop('wallet_id', self.wallet_id),
            input_mint=input_mint,
            output_mint=output_mint,
            input_amount=str(input_amount),
            output_amount=str(output_amount),
            kind=kwargs.pop('kind', TradeKind.SWAP),
            executed_at=executed_at or BASE_TIME + timedelta(minutes=n),
            input_usd_value=None if input_usd_value is False else str(input_usd_value),
            output_usd_value=None if output_usd_value is False else str(output_usd_value),
            **kwargs,
        )


class FakePriceProvider:

    def __init__(self, prices=None, error=None):
        self.prices = {m: Decimal(str(p)) for m, p in (prices or {}).items()}
        self.error = error
        self.calls = []

    def get_price(self, mints):
        mints = list(mints)
        self.calls.append(mints)
        if self.error is not None:
            raise self.error
        now = datetime.now(timezone.utc)
        return [TokenPrice(mint=m, usd_price=self.prices[m], as_of=now) for m in mints if m in self.prices]


class FakeBalanceReader:

    def __init__(self, native="0", tokens=None):
        self.native = Decimal(native)
        self.tokens = {m: Decimal(str(a)) for m, a in (tokens or {}).items()}

    def get_token_balances(self, address):
        return WalletBalances(
            address=address,
            native_balance=self.native,
            tokens=[TokenBalance(mint=m, ui_amount=a, decimals=6) for m, a in self.tokens.items()],
        )


class FakeOrderBook:

    def __init__(self, orders=None, error=None):
        self.orders = orders or []
        self.error = error
        self.statuses = []

    def get_orders(self, wallet_address, status='history'):
        self.statuses.append(status)
        if self.error is not None:
            raise self.error
        return list(self.orders)


def http_response(status=200, payload=None, headers=None, reason='OK'):
    """A ``requests.Response`` stand-in for a mocked session."""
    resp = MagicMock()
    resp.status_code = status
    resp.headers = headers or {}
    resp.reason = reason
    if isinstance(payload, Exception):
        resp.json.side_effect = payload
    else:
        resp.json.return_value = payload
    resp.text = str(payload)
    return resp


def jupiter_price_service(*responses):
    """Real client and price service over a session that replays ``responses``."""
    session = MagicMock()
    session.headers = {}
    session.request.side_effect = list(responses)
    client = JupiterClient(TrackerConfig(jupiter_base_url="https://jup.test", max_retries=0),
                           session=session, sleep=lambda _: None)
    return JupiterPriceService(client, cache_ttl=60)


@pytest.fixture
def make_entry():
    return EntryFactory()


@pytest.fixture
def store():
    return InMemoryTradeStore()
