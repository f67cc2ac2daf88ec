"""Normalization between Dhan's loosely-typed JSON and the internal models.

Positions arrive with inconsistent field presence and types (numbers as
strings, missing averages, nulls). Every accessor here coerces instead of
raising, and a record that still cannot be read is logged and skipped so the
rest of the batch survives.
"""

import logging
import math
from typing import Any, Iterable, Mapping, Optional

from app.broker.errors import MalformedRecord
from app.broker.models import (
    BUY,
    LIMIT,
    LONG,
    MARKET,
    ORDER_TYPES,
    SELL,
    SHORT,
    Account,
    ClosePositionRequest,
    Order,
    OrderRequest,
    Position,
)

logger = logging.getLogger("dhanbridge.normalize")


# ── Coercion helpers ─────────────────────────────────────────────────────


def as_float(record: Mapping, key: str) -> float:
    """Read ``record[key]`` as a float, ``0.0`` when absent or unreadable."""
    value = record.get(key)
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        result = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0.0
    return result if math.isfinite(result) else 0.0


def as_int(record: Mapping, key: str) -> int:
    """Read ``record[key]`` as an int, ``0`` when absent or unreadable.

    Accepts float-like strings such as ``"10.0"``.
    """
    value = record.get(key)
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float) and not math.isfinite(value):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return int(as_float(record, key))


def as_str(record: Mapping, key: str) -> Optional[str]:
    """Read ``record[key]`` as a stripped string, ``None`` when absent or blank."""
    value = record.get(key)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


# ── Positions ────────────────────────────────────────────────────────────


def _resolve_avg_price(record: Mapping, is_long: bool) -> float:
    side_key = "buyAvg" if is_long else "sellAvg"
    avg = as_float(record, side_key)
    if avg == 0.0:
        avg = as_float(record, "avgPrice")
    if avg == 0.0:
        prefix = "dayBuy" if is_long else "daySell"
        day_qty = as_int(record, f"{prefix}Qty")
        if day_qty > 0:
            avg = as_float(record, f"{prefix}Value") / day_qty
    return avg


def normalize_position(record: Any) -> Optional[Position]:
    """Map one raw position record to a ``Position``.

    Returns ``None`` for closed positions (``netQty == 0``). Raises
    ``MalformedRecord`` when the record has no usable symbol or is not an
    object at all.
    """
    if not isinstance(record, Mapping):
        raise MalformedRecord(f"Position record is not an object: {record!r}")

    net_qty = as_int(record, "netQty")
    if net_qty == 0:
        return None

    quantity = abs(net_qty)
    is_long = net_qty > 0

    symbol = as_str(record, "tradingSymbol") or as_str(record, "securityId")
    if symbol is None:
        raise MalformedRecord("Position record has neither tradingSymbol nor securityId")

    avg_price = _resolve_avg_price(record, is_long)
    unrealized = as_float(record, "unrealizedProfit")
    pnl = as_float(record, "realizedProfit") + unrealized

    ltp = as_float(record, "lastTradedPrice")
    if ltp == 0.0:
        ltp = as_float(record, "ltp")
    if ltp == 0.0 and quantity > 0 and avg_price > 0:
        ltp = avg_price + unrealized / quantity

    return Position(
        symbol=symbol,
        security_id=as_str(record, "securityId"),
        exchange=as_str(record, "exchangeSegment"),
        quantity=quantity,
        avg_price=avg_price,
        ltp=ltp,
        pnl=pnl,
        product_type=as_str(record, "productType"),
        position_type=LONG if is_long else SHORT,
    )


def normalize_positions(payload: Any) -> list[Position]:
    """Map a broker positions payload to open ``Position`` objects.

    Accepts the bare list Dhan returns, a ``{"data": [...]}`` wrapper, or
    ``None``. Malformed records are logged and skipped.
    """
    if payload is None:
        return []
    if isinstance(payload, Mapping):
        payload = payload.get("data") or []
    if not isinstance(payload, Iterable) or isinstance(payload, (str, bytes)):
        logger.warning("Unexpected positions payload type: %s", type(payload).__name__)
        return []

    positions: list[Position] = []
    for index, record in enumerate(payload):
        try:
            position = normalize_position(record)
        except MalformedRecord as exc:
            logger.warning("Skipping position record %d: %s", index, exc.message)
            continue
        except Exception:
            logger.exception("Skipping position record %d: unexpected error", index)
            continue
        if position is not None:
            positions.append(position)
    return positions


# ── Orders ───────────────────────────────────────────────────────────────


def validate_order_request(request: OrderRequest) -> None:
    """Raise ``ValueError`` when the request cannot be sent to the broker."""
    if not request.symbol or not str(request.symbol).strip():
        raise ValueError("symbol (security id) is required")
    if request.transaction_type not in (BUY, SELL):
        raise ValueError(f"transaction_type must be BUY or SELL, got {request.transaction_type!r}")
    if request.order_type not in ORDER_TYPES:
        raise ValueError(f"Unsupported order_type: {request.order_type!r}")
    if request.quantity <= 0:
        raise ValueError("quantity must be positive")
    if request.order_type == LIMIT and (request.price is None or request.price <= 0):
        raise ValueError("LIMIT orders require a positive price")


def validate_close_request(request: ClosePositionRequest) -> None:
    """Raise ``ValueError`` when the close request is unusable."""
    if request.position_type not in (LONG, SHORT):
        raise ValueError(f"position_type must be LONG or SHORT, got {request.position_type!r}")
    if not request.security_id or not str(request.security_id).strip():
        raise ValueError("security_id is required to close a position")
    if request.quantity <= 0:
        raise ValueError("quantity must be positive")


def build_order_payload(account: Account, request: OrderRequest) -> dict:
    """Build the ``POST /v2/orders`` body for a new order."""
    payload = {
        "dhanClientId": account.client_id,
        "transactionType": request.transaction_type,
        "exchangeSegment": request.exchange,
        "productType": request.product_type,
        "orderType": request.order_type,
        "quantity": request.quantity,
        "securityId": request.symbol,
        "validity": "DAY",
    }
    if request.order_type == LIMIT:
        payload["price"] = request.price
    return payload


def closing_side(position_type: str) -> str:
    """Transaction type that flattens a position of the given side."""
    return SELL if position_type == LONG else BUY


def build_close_payload(account: Account, request: ClosePositionRequest) -> dict:
    """Build a market order body that flattens an open position."""
    return {
        "dhanClientId": account.client_id,
        "transactionType": closing_side(request.position_type),
        "exchangeSegment": request.exchange,
        "productType": request.product_type,
        "orderType": MARKET,
        "quantity": request.quantity,
        "securityId": request.security_id,
        "validity": "DAY",
    }


def parse_order_ack(payload: Any, **known) -> Order:
    """Build an ``Order`` from the broker's acknowledgment.

    ``orderId`` and ``orderStatus`` come only from the broker; when absent
    they stay ``None``. ``known`` supplies fields the caller already holds
    from its own request (symbol, side, quantity, ...).
    """
    record: Mapping = payload if isinstance(payload, Mapping) else {}
    return Order(
        order_id=as_str(record, "orderId"),
        status=as_str(record, "orderStatus"),
        symbol=known.get("symbol"),
        exchange=known.get("exchange"),
        transaction_type=known.get("transaction_type"),
        quantity=known.get("quantity"),
        price=known.get("price"),
        order_type=known.get("order_type"),
        product_type=known.get("product_type"),
        timestamp=as_str(record, "createTime") or as_str(record, "updateTime"),
    )
