"""Account link registry: owns the single active Dhan account.

All writes go through one ``asyncio.Lock``. The active account is held as
an immutable ``Account`` reference that is replaced only after the database
write succeeds, so readers never observe a partially updated record.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from app.broker.errors import NoActiveAccount
from app.broker.models import Account
from app.repos.account_repo import AccountRepo

logger = logging.getLogger("dhanbridge.accounts")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class AccountLinkRegistry:
    """Links broker credentials and hands out the active account.

    Args:
        repo: ``AccountRepo`` (or duck-type for tests) used for durable storage.
    """

    def __init__(self, repo: AccountRepo) -> None:
        self._repo = repo
        self._write_lock = asyncio.Lock()
        self._active: Optional[Account] = repo.get_active()

    async def link(self, client_id: str, access_token: str) -> Account:
        """Link *client_id* and make it the active account.

        An existing record for the same client is updated in place; any
        other account loses its active flag.
        """
        client_id = (client_id or "").strip()
        access_token = (access_token or "").strip()
        if not client_id:
            raise ValueError("client_id is required")
        if not access_token:
            raise ValueError("access_token is required")

        async with self._write_lock:
            now = _now()
            existing = self._repo.get_by_client_id(client_id)
            if existing is not None:
                account = existing.with_updates(
                    access_token=access_token,
                    is_active=True,
                    linked_at=now,
                    last_synced_at=now,
                )
            else:
                account = Account(
                    client_id=client_id,
                    access_token=access_token,
                    is_active=True,
                    linked_at=now,
                    last_synced_at=now,
                )
            saved = self._repo.save(account)
            self._active = saved

        logger.info(
            "Linked Dhan account %s (%s)",
            client_id, "updated" if existing is not None else "new",
        )
        return saved

    def get_active(self) -> Optional[Account]:
        return self._active

    def require_active(self) -> Account:
        """Return the active account or raise ``NoActiveAccount``."""
        account = self._active
        if account is None:
            raise NoActiveAccount()
        return account

    async def mark_synced(self, client_id: str) -> Optional[Account]:
        """Record a successful sync for *client_id*."""
        async with self._write_lock:
            now = _now()
            self._repo.update_last_synced(client_id, now)
            current = self._active
            if current is not None and current.client_id == client_id:
                self._active = current.with_updates(last_synced_at=now)
                return self._active
        return None
