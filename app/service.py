"""Trading service: the operations exposed to the HTTP layer.

Combines the account registry, the Dhan client, and the normalizers.
Broker failures propagate as classified errors; nothing is replaced with
placeholder data.
"""

import logging
from typing import Optional

from app.accounts.registry import AccountLinkRegistry
from app.broker.dhan_client import DhanClient
from app.broker.models import (
    MARKET,
    Account,
    ClosePositionRequest,
    Instrument,
    Order,
    OrderRequest,
    Position,
)
from app.broker.normalize import (
    build_close_payload,
    build_order_payload,
    closing_side,
    normalize_positions,
    parse_order_ack,
    validate_close_request,
    validate_order_request,
)
from app.instruments.security_master import SecurityMaster

logger = logging.getLogger("dhanbridge.service")

DEFAULT_SEARCH_LIMIT = 10
MAX_SEARCH_LIMIT = 100


class TradingService:
    """Facade over account linking, broker calls, and symbol search.

    Args:
        registry: ``AccountLinkRegistry`` holding the active account.
        broker:   ``DhanClient`` (or duck-type for tests).
        securities: ``SecurityMaster`` index.
    """

    def __init__(
        self,
        registry: AccountLinkRegistry,
        broker: DhanClient,
        securities: SecurityMaster,
    ) -> None:
        self._registry = registry
        self._broker = broker
        self._securities = securities

    # ── Accounts ─────────────────────────────────────────────────────────

    async def link_account(self, client_id: str, access_token: str) -> Account:
        return await self._registry.link(client_id, access_token)

    def get_active_account(self) -> Optional[Account]:
        return self._registry.get_active()

    # ── Positions ────────────────────────────────────────────────────────

    async def get_positions(self) -> list[Position]:
        """Fetch and normalize open positions for the active account."""
        account = self._registry.require_active()
        logger.info("Fetching positions for %s", account.client_id)
        result = await self._broker.get_positions(account)
        payload = result.unwrap()

        positions = normalize_positions(payload)
        logger.info("Parsed %d open positions", len(positions))
        await self._registry.mark_synced(account.client_id)
        return positions

    # ── Orders ───────────────────────────────────────────────────────────

    async def create_order(self, request: OrderRequest) -> Order:
        account = self._registry.require_active()
        validate_order_request(request)
        payload = build_order_payload(account, request)
        logger.info(
            "Placing %s %s %d x %s on %s",
            request.order_type, request.transaction_type,
            request.quantity, request.symbol, request.exchange,
        )
        result = await self._broker.place_order(account, payload)
        return parse_order_ack(
            result.unwrap(),
            symbol=request.symbol,
            exchange=request.exchange,
            transaction_type=request.transaction_type,
            quantity=request.quantity,
            price=payload.get("price"),
            order_type=request.order_type,
            product_type=request.product_type,
        )

    async def close_order(self, order_id: str) -> Order:
        """Cancel a pending order."""
        account = self._registry.require_active()
        order_id = (order_id or "").strip()
        if not order_id:
            raise ValueError("order_id is required")
        logger.info("Cancelling order %s", order_id)
        result = await self._broker.cancel_order(account, order_id)
        return parse_order_ack(result.unwrap())

    async def close_position(self, request: ClosePositionRequest) -> Order:
        """Flatten a position with an opposite-side market order."""
        account = self._registry.require_active()
        validate_close_request(request)
        payload = build_close_payload(account, request)
        logger.info(
            "Closing %s position %s (%d) with %s",
            request.position_type, request.symbol,
            request.quantity, payload["transactionType"],
        )
        result = await self._broker.place_order(account, payload)
        return parse_order_ack(
            result.unwrap(),
            symbol=request.symbol,
            exchange=request.exchange,
            transaction_type=closing_side(request.position_type),
            quantity=request.quantity,
            order_type=MARKET,
            product_type=request.product_type,
        )

    # ── Instruments ──────────────────────────────────────────────────────

    def search_symbols(
        self,
        query: str,
        exchange: Optional[str] = None,
        limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> list[Instrument]:
        limit = max(0, min(limit, MAX_SEARCH_LIMIT))
        return self._securities.search(query, exchange=exchange, limit=limit)

    def get_instrument(self, security_id: str) -> Optional[Instrument]:
        return self._securities.get_by_id(security_id)
