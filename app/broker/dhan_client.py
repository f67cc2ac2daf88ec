"""Dhan v2 REST API async client.

Issues authenticated calls for position queries, order placement, and
order cancellation. Each call is a single attempt whose outcome is returned
as a classified ``BrokerResult``.
"""

import json
import logging
from typing import Any, Optional

import httpx

from app.broker.models import Account, BrokerResult
from app.config import Config

logger = logging.getLogger("dhanbridge.broker")


class DhanClient:
    """Async client wrapping the Dhan v2 REST API."""

    def __init__(self, config: Config) -> None:
        self._config = config
        self._base_url = config.broker_base_url
        self._timeout = config.broker_timeout_seconds

    def _headers(self, account: Account) -> dict:
        return {
            "access-token": account.access_token,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    # ── Raw call ─────────────────────────────────────────────────────────

    async def call(
        self,
        method: str,
        path: str,
        account: Account,
        body: Optional[dict] = None,
    ) -> BrokerResult:
        """Execute one HTTP request against the broker.

        Any 4xx/5xx answer becomes a ``rejected`` result carrying the raw
        response text. Any ``httpx.RequestError`` (connect, timeout, decoding,
        redirects) becomes ``transport_error``. Nothing is retried.
        """
        url = f"{self._base_url}{path}"
        kwargs: dict[str, Any] = {
            "headers": self._headers(account),
            "timeout": self._timeout,
        }
        if body is not None:
            kwargs["json"] = body

        try:
            async with httpx.AsyncClient() as client:
                resp = await client.request(method.upper(), url, **kwargs)
        except httpx.RequestError as exc:
            logger.error("Dhan %s %s transport error: %s", method.upper(), path, exc)
            return BrokerResult(kind="transport_error", error=str(exc) or type(exc).__name__)

        text = resp.text
        if resp.status_code >= 400:
            logger.error(
                "Dhan %s %s returned %d: %s",
                method.upper(), path, resp.status_code, text,
            )
            return BrokerResult(kind="rejected", status_code=resp.status_code, body=text)

        payload = None
        if text.strip():
            try:
                payload = resp.json()
            except json.JSONDecodeError:
                logger.warning("Dhan %s %s returned non-JSON body", method.upper(), path)
        logger.debug("Dhan %s %s -> %d", method.upper(), path, resp.status_code)
        return BrokerResult(
            kind="ok", status_code=resp.status_code, body=text, payload=payload,
        )

    # ── Endpoints ────────────────────────────────────────────────────────

    async def get_positions(self, account: Account) -> BrokerResult:
        """Fetch the raw open-position records."""
        return await self.call("get", "/v2/positions", account)

    async def place_order(self, account: Account, payload: dict) -> BrokerResult:
        """Submit an order payload built by ``app.broker.normalize``."""
        return await self.call("post", "/v2/orders", account, body=payload)

    async def cancel_order(self, account: Account, order_id: str) -> BrokerResult:
        """Cancel a pending order by broker order id."""
        return await self.call("delete", f"/v2/orders/{order_id}", account)
