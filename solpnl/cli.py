"""
Command-line interface for solpnl.

    solpnl pnl --wallet-id main --address <ADDR> [--mint MINT] [--sync]
    solpnl history --wallet-id main [--mint MINT] [--kind swap|limit_fill]
    solpnl sync --wallet-id main --address <ADDR>
    solpnl record-swap --wallet-id main --input-mint ... --output-mint ...
    solpnl orders --address <ADDR>
    solpnl price SOL BONK <MINT>
"""

import argparse
import logging
import math
import sys
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from .config.settings import KNOWN_TOKENS, TrackerConfig
from .logging_config import setup_logging
from .services.errors import SolPnLError
from .services.export_service import export_csv, snapshot_to_frame, trades_to_frame
from .services.jupiter_client import JupiterClient
from .services.ledger import (
    OrderReconciliationService, ParquetTradeStore, PnLService, S3TradeStore,
    TradeKind, TradeParams, TradeRecordingService,
)
from .services.order_book import TriggerOrderService
from .services.price_service import JupiterPriceService
from .services.solana_rpc import SolanaRpcService
from .services.token_info import TokenInfoService

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything a command needs, wired once per process."""
    pnl: PnLService
    recorder: TradeRecordingService
    reconciler: OrderReconciliationService
    prices: JupiterPriceService


def build_services(config: TrackerConfig) -> Services:
    if config.s3_bucket:
        store = S3TradeStore(config.s3_bucket, prefix=config.s3_prefix)
    else:
        store = ParquetTradeStore(config.ledger_path)
    logger.debug(f"Using ledger store {type(store).__name__}")

    client = JupiterClient(config)
    prices = JupiterPriceService(client, cache_ttl=config.price_cache_ttl)
    rpc = SolanaRpcService(config)
    token_info = TokenInfoService(client=client, rpc=rpc)
    recorder = TradeRecordingService(store, prices)

    return Services(
        pnl=PnLService(store, rpc, prices, token_info=token_info),
        recorder=recorder,
        reconciler=OrderReconciliationService(TriggerOrderService(client), recorder, token_info),
        prices=prices,
    )


SYMBOL_TO_MINT = {str(info['symbol']).upper(): mint for mint, info in KNOWN_TOKENS.items()}


def resolve_mint(token: str) -> str:
    """Map a known symbol such as SOL or BONK to its mint; anything else is taken as a mint."""
    return SYMBOL_TO_MINT.get(token.upper(), token)


def print_section(title: str) -> None:
    print()
    print("=" * 70)
    print(f"  {title}")
    print("=" * 70)


def format_usd(value: Decimal, signed: bool = False) -> str:
    if signed:
        sign = '+' if value >= 0 else '-'
        return f"{sign}${abs(value):,.2f}"
    return f"${value:,.2f}"


def format_amount(value: Decimal) -> str:
    if value == 0:
        return "0"
    if abs(value) < Decimal('0.001'):
        return f"{value:.2e}"
    if abs(value) < 1:
        return f"{value:.6f}"
    return f"{value:,.4f}"


def cmd_pnl(args, services: Services) -> int:
    if args.sync:
        synced = services.reconciler.sync_filled_orders(args.wallet_id, args.address)
        print(f"[+] Synced {synced} new limit order fills")

    snapshot = services.pnl.calculate_pnl(args.wallet_id, args.address, mint=args.mint)

    print_section(f"PnL REPORT - wallet {args.wallet_id}")
    if not snapshot.tokens:
        print("[!] No tracked tokens found.")
        return 0

    for token in snapshot.tokens:
        label = (token.symbol or token.mint[:8]).ljust(10)
        if token.tracked:
            print(f"  {label} bal {format_amount(token.balance):>16}  avg {format_usd(token.avg_cost):>12}  "
                  f"now {format_usd(token.current_price):>12}  value {format_usd(token.current_value):>14}  "
                  f"unrealized {format_usd(token.unrealized_pnl, signed=True):>13}  "
                  f"realized {format_usd(token.realized_pnl, signed=True):>12}")
        else:
            print(f"  {label} bal {format_amount(token.balance):>16}  avg {'untracked':>12}  "
                  f"now {format_usd(token.current_price):>12}  value {format_usd(token.current_value):>14}")

    print()
    print(f"Total Value:    {format_usd(snapshot.total_value)}")
    print(f"Unrealized PnL: {format_usd(snapshot.total_unrealized_pnl, signed=True)} "
          f"({snapshot.total_unrealized_pnl_percent:+.1f}%)")
    print(f"Realized PnL:   {format_usd(snapshot.total_realized_pnl, signed=True)}")

    if snapshot.untracked_tokens:
        shown = ', '.join(snapshot.untracked_tokens[:5])
        more = '...' if len(snapshot.untracked_tokens) > 5 else ''
        print()
        print(f"[!] Untracked tokens (no trade history): {shown}{more}")
        print("    These tokens were received outside recorded trades (transfers or airdrops)")

    for diagnostic in snapshot.diagnostics:
        print(f"[!] {diagnostic.describe()}")

    print()
    print("Calculated using weighted-average cost method")

    if args.csv:
        path = export_csv(snapshot_to_frame(snapshot), args.csv)
        print(f"[+] Saved report to {path}")
    return 0


def cmd_history(args, services: Services) -> int:
    offset = (args.page - 1) * args.limit
    kind = TradeKind(args.kind) if args.kind else None
    trades, total = services.recorder.get_trade_history(
        args.wallet_id, mint=args.mint, kind=kind, limit=args.limit, offset=offset,
    )

    if not trades:
        print("[!] No trades found.")
        return 0

    df = trades_to_frame(trades)
    print(df[['Executed At (UTC)', 'Type', 'Input Amount', 'Input Symbol',
              'Output Amount', 'Output Symbol', 'Input USD Value']].to_string(index=False, na_rep='N/A'))
    pages = max(1, math.ceil(total / args.limit))
    print()
    print(f"Page {args.page} of {pages} ({total} total trades)")

    if args.csv:
        path = export_csv(df, args.csv)
        print(f"[+] Saved history to {path}")
    return 0


def cmd_sync(args, services: Services) -> int:
    synced = services.reconciler.sync_filled_orders(args.wallet_id, args.address)
    print(f"[+] Synced {synced} new limit order fills")
    return 0


def cmd_record_swap(args, services: Services) -> int:
    entry = services.recorder.record_swap(TradeParams(
        wallet_id=args.wallet_id,
        input_mint=args.input_mint,
        output_mint=args.output_mint,
        input_amount=args.input_amount,
        output_amount=args.output_amount,
        signature=args.signature,
        input_symbol=args.input_symbol,
        output_symbol=args.output_symbol,
    ))
    print(f"[+] Recorded swap {entry.id}")
    if not entry.has_valuation:
        print("[!] USD valuation unavailable; this trade will not count toward cost basis")
    return 0


def cmd_orders(args, services: Services) -> int:
    quotes = services.reconciler.active_orders_with_prices(args.address)

    print_section(f"ACTIVE ORDERS - {args.address}")
    if not quotes:
        print("[!] No active orders.")
        return 0

    total_blocked = Decimal('0')
    for quote in quotes:
        input_label = quote.input_symbol or quote.order.input_mint[:8]
        output_label = quote.output_symbol or quote.order.output_mint[:8]
        if quote.current_price > 0:
            distance = f"{quote.diff_percent:+.2f}% {quote.direction}"
        else:
            distance = "no market price"
        print(f"  {quote.order.order_key[:12]:<12}  {format_amount(quote.input_amount):>14} {input_label:<6} -> "
              f"{format_amount(quote.output_amount):>14} {output_label:<6}  "
              f"target {format_amount(quote.target_price):>12}  now {format_amount(quote.current_price):>12}  "
              f"{distance:<18}  {format_usd(quote.input_usd_value):>12}")
        total_blocked += quote.input_usd_value

    print()
    print(f"Total blocked: {format_usd(total_blocked)} across {len(quotes)} orders")
    return 0


def cmd_price(args, services: Services) -> int:
    mints = [resolve_mint(token) for token in args.tokens]
    prices = services.prices.get_price(mints)

    if not prices:
        print("[!] No prices returned")
        return 0

    print_section("Prices")
    for price in prices:
        print(f"  {price.mint:<46} ${price.usd_price:.6f}")
    missing = [mint for mint in mints if mint not in {p.mint for p in prices}]
    if missing:
        print()
        print(f"[!] No price for: {', '.join(missing)}")
    return 0


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError("must be >= 1")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='solpnl', description='Track PnL of a Solana wallet')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')
    parser.add_argument('--env-file', type=str, help='Path to a .env file')
    parser.add_argument('--debug-log', type=str, help='Also write verbose logs to this file')
    sub = parser.add_subparsers(dest='command', required=True)

    pnl = sub.add_parser('pnl', help='Show PnL report for a wallet')
    pnl.add_argument('--wallet-id', required=True, help='Ledger wallet identifier')
    pnl.add_argument('--address', required=True, help='Wallet public key')
    pnl.add_argument('--mint', help='Only report this token mint')
    pnl.add_argument('--sync', action='store_true', help='Sync filled limit orders first')
    pnl.add_argument('--csv', help='Also write the report to this CSV file')
    pnl.set_defaults(handler=cmd_pnl)

    history = sub.add_parser('history', help='Show trade history for a wallet')
    history.add_argument('--wallet-id', required=True, help='Ledger wallet identifier')
    history.add_argument('--mint', help='Filter by token mint')
    history.add_argument('--kind', choices=[k.value for k in TradeKind], help='Filter by trade type')
    history.add_argument('--limit', type=_positive_int, default=20, help='Trades per page (default: 20)')
    history.add_argument('--page', type=_positive_int, default=1, help='Page number (default: 1)')
    history.add_argument('--csv', help='Also write this page to a CSV file')
    history.set_defaults(handler=cmd_history)

    sync = sub.add_parser('sync', help='Record newly filled limit orders')
    sync.add_argument('--wallet-id', required=True, help='Ledger wallet identifier')
    sync.add_argument('--address', required=True, help='Wallet public key')
    sync.set_defaults(handler=cmd_sync)

    record = sub.add_parser('record-swap', help='Record an executed swap')
    record.add_argument('--wallet-id', required=True, help='Ledger wallet identifier')
    record.add_argument('--input-mint', required=True)
    record.add_argument('--output-mint', required=True)
    record.add_argument('--input-amount', required=True, help='Amount sold, in token units')
    record.add_argument('--output-amount', required=True, help='Amount received, in token units')
    record.add_argument('--signature', help='Transaction signature')
    record.add_argument('--input-symbol')
    record.add_argument('--output-symbol')
    record.set_defaults(handler=cmd_record_swap)

    orders = sub.add_parser('orders', help='Show active limit orders against current prices')
    orders.add_argument('--address', required=True, help='Wallet public key')
    orders.set_defaults(handler=cmd_orders)

    price = sub.add_parser('price', help='Show current USD prices')
    price.add_argument('tokens', nargs='+', metavar='TOKEN', help='Token mint or known symbol (SOL, USDC, BONK, ...)')
    price.set_defaults(handler=cmd_price)

    return parser


def main(argv: Optional[List[str]] = None, services: Optional[Services] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = TrackerConfig.from_env(args.env_file)
    debug = args.verbose or config.debug
    setup_logging(logging.DEBUG if debug else logging.WARNING, debug_log_path=args.debug_log)

    try:
        if services is None:
            services = build_services(config)
        return args.handler(args, services)
    except SolPnLError as e:
        print(f"\033[31m[!] {e}\033[0m", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
