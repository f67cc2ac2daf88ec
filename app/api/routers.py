"""Internal API routers: account, positions, orders, and symbol endpoints.

No business logic, no DB access. Delegates to the ``TradingService`` and
maps classified failures to HTTP status codes.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from app.broker.errors import BrokerRejected, NoActiveAccount, TransportError
from app.broker.models import ClosePositionRequest, OrderRequest, to_api_dict

logger = logging.getLogger("dhanbridge.api")
router = APIRouter(prefix="/api/dhan")

# ── Shared state (set during app startup) ────────────────────────────────

_service = None  # Set via configure_routers()


def configure_routers(service=None) -> None:
    """Inject dependencies from the application startup.

    Args:
        service: A ``TradingService`` instance (or duck-type for tests).
    """
    global _service  # noqa: PLW0603
    _service = service


# ── Envelope helpers ─────────────────────────────────────────────────────


def _ok(message: str, data: Any = None) -> dict:
    return {"success": True, "message": message, "data": data}


def _error(status_code: int, message: str, detail: Optional[str] = None) -> JSONResponse:
    content = {"success": False, "message": message, "data": None}
    if detail is not None:
        content["detail"] = detail
    return JSONResponse(status_code=status_code, content=content)


def _failure(action: str, exc: Exception) -> JSONResponse:
    """Map a raised error to a structured error response."""
    if isinstance(exc, NoActiveAccount):
        return _error(409, f"Failed to {action}: {exc.message}")
    if isinstance(exc, BrokerRejected):
        return _error(
            502,
            f"Failed to {action}: broker returned status {exc.status_code}",
            detail=exc.body,
        )
    if isinstance(exc, TransportError):
        return _error(504, f"Failed to {action}: {exc.message}")
    if isinstance(exc, (ValueError, TypeError)):
        return _error(400, f"Failed to {action}: {exc}")
    logger.exception("Unexpected error while trying to %s", action)
    return _error(500, f"Failed to {action}: internal error")


def _no_service() -> JSONResponse:
    return _error(503, "Service not configured")


def _pick(body: dict, *keys: str, default=None):
    """Return the first present key; accepts camelCase and snake_case."""
    for key in keys:
        if body.get(key) is not None:
            return body[key]
    return default


def _order_request_from(body: dict) -> OrderRequest:
    price = _pick(body, "price")
    return OrderRequest(
        symbol=str(_pick(body, "symbol", "securityId", "security_id", default="")),
        exchange=str(_pick(body, "exchange", "exchangeSegment", default="")),
        transaction_type=str(_pick(body, "transactionType", "transaction_type", default="")).upper(),
        quantity=int(_pick(body, "quantity", default=0)),
        order_type=str(_pick(body, "orderType", "order_type", default="MARKET")).upper(),
        product_type=str(_pick(body, "productType", "product_type", default="")),
        price=float(price) if price is not None else None,
    )


def _close_request_from(body: dict) -> ClosePositionRequest:
    return ClosePositionRequest(
        symbol=str(_pick(body, "symbol", default="")),
        security_id=str(_pick(body, "securityId", "security_id", default="")),
        exchange=str(_pick(body, "exchange", "exchangeSegment", default="")),
        quantity=int(_pick(body, "quantity", default=0)),
        product_type=str(_pick(body, "productType", "product_type", default="")),
        position_type=str(_pick(body, "positionType", "position_type", default="")).upper(),
    )


# ── Account ──────────────────────────────────────────────────────────────


@router.post("/link-account")
async def link_account(body: dict):
    """Link a Dhan client id and access token as the active account."""
    if _service is None:
        return _no_service()
    try:
        account = await _service.link_account(
            _pick(body, "clientId", "client_id", default=""),
            _pick(body, "accessToken", "access_token", default=""),
        )
    except Exception as exc:
        return _failure("link account", exc)
    return _ok("Dhan account linked successfully", account.to_public_dict())


@router.get("/account")
async def get_active_account():
    """Return the active account with its token masked."""
    if _service is None:
        return _no_service()
    account = _service.get_active_account()
    if account is None:
        return _error(404, "No active account found")
    return _ok("Active account retrieved", account.to_public_dict())


# ── Positions ────────────────────────────────────────────────────────────


@router.get("/positions")
async def get_positions():
    """Return open positions from Dhan."""
    if _service is None:
        return _no_service()
    try:
        positions = await _service.get_positions()
    except Exception as exc:
        return _failure("fetch positions", exc)
    return _ok("Positions fetched successfully", [to_api_dict(p) for p in positions])


@router.post("/positions/close")
async def close_position(body: dict):
    """Flatten an open position with a market order."""
    if _service is None:
        return _no_service()
    try:
        order = await _service.close_position(_close_request_from(body))
    except Exception as exc:
        return _failure("close position", exc)
    return _ok("Position closed successfully", to_api_dict(order))


# ── Orders ───────────────────────────────────────────────────────────────


@router.post("/orders")
async def create_order(body: dict):
    """Place a new order."""
    if _service is None:
        return _no_service()
    try:
        order = await _service.create_order(_order_request_from(body))
    except Exception as exc:
        return _failure("create order", exc)
    return _ok("Order created successfully", to_api_dict(order))


@router.delete("/orders/{order_id}")
async def close_order(order_id: str):
    """Cancel a pending order."""
    if _service is None:
        return _no_service()
    try:
        order = await _service.close_order(order_id)
    except Exception as exc:
        return _failure("close order", exc)
    return _ok("Order closed successfully", to_api_dict(order))


# ── Symbols ──────────────────────────────────────────────────────────────


@router.post("/symbols/search")
async def search_symbols(body: dict):
    """Ranked symbol search over the security master."""
    if _service is None:
        return _no_service()
    try:
        results = _service.search_symbols(
            str(_pick(body, "query", default="")),
            exchange=_pick(body, "exchange"),
            limit=int(_pick(body, "limit", default=10)),
        )
    except Exception as exc:
        return _failure("search symbols", exc)
    return _ok("Symbols found", [to_api_dict(i) for i in results])


@router.get("/symbols/{security_id}")
async def get_symbol(security_id: str):
    """Exact lookup by Dhan security id."""
    if _service is None:
        return _no_service()
    instrument = _service.get_instrument(security_id)
    if instrument is None:
        return _error(404, f"Unknown security id: {security_id}")
    return _ok("Symbol found", to_api_dict(instrument))
