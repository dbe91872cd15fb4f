"""
Trade ledger data model.

One ``TradeLedgerEntry`` is one executed swap or one filled limit order.
Amounts and USD figures are kept as decimal strings exactly as recorded,
so nothing is lost to binary floating point between recording and the
cost-basis fold.
"""

import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, Context, ROUND_HALF_EVEN
from enum import Enum
from typing import Any, Dict, Optional

from ..errors import InvalidAmountError

# Arithmetic context for all ledger and PnL math; entered with localcontext()
LEDGER_CONTEXT = Context(prec=50, rounding=ROUND_HALF_EVEN)

ZERO = Decimal('0')


class TradeKind(str, Enum):
    SWAP = 'swap'
    LIMIT_FILL = 'limit_fill'


def to_decimal(value: Any, field_name: str = 'amount') -> Decimal:
    """
    Parse a recorded numeric value into a Decimal.

    Floats are rejected: they would carry binary artifacts into the ledger.
    Anything that is not a finite decimal raises ``InvalidAmountError``.
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or isinstance(value, float):
        raise InvalidAmountError(f"{field_name} must be a decimal string, got {type(value).__name__}")
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise InvalidAmountError(f"{field_name} is not numeric: {value!r}") from None
    else:
        raise InvalidAmountError(f"{field_name} has unsupported type {type(value).__name__}")

    if not result.is_finite():
        raise InvalidAmountError(f"{field_name} is not finite: {value!r}")
    return result


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class TradeLedgerEntry:
    """One economic event in a wallet's trade ledger."""
    wallet_id: str
    input_mint: str
    output_mint: str
    input_amount: str
    output_amount: str
    kind: TradeKind
    executed_at: datetime
    signature: Optional[str] = None
    input_symbol: Optional[str] = None
    output_symbol: Optional[str] = None
    input_usd_price: Optional[str] = None
    output_usd_price: Optional[str] = None
    input_usd_value: Optional[str] = None
    output_usd_value: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self):
        # Coerce loosely typed inputs without mutating semantics
        object.__setattr__(self, 'kind', TradeKind(self.kind))
        object.__setattr__(self, 'executed_at', ensure_utc(self.executed_at))
        if self.signature == '':
            object.__setattr__(self, 'signature', None)

    @property
    def has_valuation(self) -> bool:
        """True when both legs carry a USD value."""
        return bool(self.input_usd_value) and bool(self.output_usd_value)

    def touches(self, mint: str) -> bool:
        return mint in (self.input_mint, self.output_mint)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['kind'] = self.kind.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TradeLedgerEntry':
        def _opt(key):
            value = data.get(key)
            if value is None:
                return None
            # pandas hands missing strings back as NaN
            if isinstance(value, float) and value != value:
                return None
            return str(value)

        executed_at = data['executed_at']
        if hasattr(executed_at, 'to_pydatetime'):
            executed_at = executed_at.to_pydatetime()
        elif isinstance(executed_at, str):
            executed_at = datetime.fromisoformat(executed_at)

        return cls(
            id=str(data['id']),
            wallet_id=str(data['wallet_id']),
            input_mint=str(data['input_mint']),
            output_mint=str(data['output_mint']),
            input_amount=str(data['input_amount']),
            output_amount=str(data['output_amount']),
            kind=TradeKind(data['kind']),
            executed_at=executed_at,
            signature=_opt('signature'),
            input_symbol=_opt('input_symbol'),
            output_symbol=_opt('output_symbol'),
            input_usd_price=_opt('input_usd_price'),
            output_usd_price=_opt('output_usd_price'),
            input_usd_value=_opt('input_usd_value'),
            output_usd_value=_opt('output_usd_value'),
        )


LEDGER_COLUMNS = [
    'id', 'wallet_id', 'input_mint', 'output_mint', 'input_amount', 'output_amount',
    'kind', 'executed_at', 'signature', 'input_symbol', 'output_symbol',
    'input_usd_price', 'output_usd_price', 'input_usd_value', 'output_usd_value',
]
