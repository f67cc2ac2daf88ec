"""Broker data models: typed representations of Dhan API objects."""

from dataclasses import asdict, dataclass, replace
from typing import Any, Optional

from app.broker.errors import BrokerRejected, TransportError


LONG = "LONG"
SHORT = "SHORT"

BUY = "BUY"
SELL = "SELL"

MARKET = "MARKET"
LIMIT = "LIMIT"

ORDER_TYPES = ("MARKET", "LIMIT", "STOP_LOSS", "STOP_LOSS_MARKET")


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def to_api_dict(obj) -> dict:
    """Serialize a model for API responses with camelCase keys."""
    return {_camel(key): value for key, value in asdict(obj).items()}


@dataclass(frozen=True)
class Account:
    """A linked Dhan account."""

    client_id: str
    access_token: str
    is_active: bool
    linked_at: str
    last_synced_at: str

    def with_updates(self, **fields) -> "Account":
        return replace(self, **fields)

    def to_public_dict(self) -> dict:
        """Serialize for API responses with the token masked."""
        data = to_api_dict(self)
        token = data.pop("accessToken")
        data["accessTokenHint"] = f"...{token[-4:]}" if len(token) > 4 else "****"
        return data


@dataclass(frozen=True)
class Position:
    """An open position."""

    symbol: str
    security_id: Optional[str]
    exchange: Optional[str]
    quantity: int  # always unsigned; direction is position_type
    avg_price: float
    ltp: float
    pnl: float
    product_type: Optional[str]
    position_type: str  # "LONG" or "SHORT"


@dataclass(frozen=True)
class OrderRequest:
    """An order creation request.

    ``symbol`` must already be the broker's security id.
    """

    symbol: str
    exchange: str
    transaction_type: str  # "BUY" or "SELL"
    quantity: int
    order_type: str  # "MARKET" or "LIMIT"
    product_type: str  # e.g. "INTRADAY", "CNC"
    price: Optional[float] = None


@dataclass(frozen=True)
class ClosePositionRequest:
    """A request to flatten an open position."""

    symbol: str
    security_id: str
    exchange: str
    quantity: int
    product_type: str
    position_type: str  # "LONG" or "SHORT"


@dataclass(frozen=True)
class Order:
    """An order as acknowledged by the broker."""

    order_id: Optional[str]
    status: Optional[str]
    symbol: Optional[str] = None
    exchange: Optional[str] = None
    transaction_type: Optional[str] = None
    quantity: Optional[int] = None
    price: Optional[float] = None
    order_type: Optional[str] = None
    product_type: Optional[str] = None
    timestamp: Optional[str] = None


@dataclass(frozen=True)
class Instrument:
    """A security master entry."""

    security_id: str
    trading_symbol: str
    name: str
    exchange_segment: str
    instrument_type: str
    tick_size: float = 0.05
    lot_size: int = 1


@dataclass(frozen=True)
class BrokerResult:
    """Outcome of a single broker call.

    ``kind`` is ``"ok"``, ``"rejected"`` (4xx/5xx, ``body`` holds the raw
    text) or ``"transport_error"`` (``error`` holds the reason).
    """

    kind: str
    status_code: Optional[int] = None
    body: str = ""
    payload: Any = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.kind == "ok"

    def unwrap(self) -> Any:
        """Return the parsed payload or raise the classified failure."""
        if self.kind == "rejected":
            raise BrokerRejected(self.status_code or 0, self.body)
        if self.kind == "transport_error":
            raise TransportError(f"Could not reach Dhan API: {self.error}")
        return self.payload
