"""Account repository: SQLite CRUD for the accounts table."""

import sqlite3
from typing import Optional

from app.broker.models import Account
from app.repos.db import get_connection


def _row_to_account(row: sqlite3.Row) -> Account:
    return Account(
        client_id=row["client_id"],
        access_token=row["access_token"],
        is_active=bool(row["is_active"]),
        linked_at=row["linked_at"],
        last_synced_at=row["last_synced_at"],
    )


class AccountRepo:
    """Data access layer for linked broker accounts.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    # ── Write ────────────────────────────────────────────────────────────

    def save(self, account: Account) -> Account:
        """Insert or update *account* keyed by ``client_id``.

        When the account is active every other account is deactivated in
        the same transaction.
        """
        conn = get_connection(self._db_path)
        try:
            with conn:
                if account.is_active:
                    conn.execute(
                        "UPDATE accounts SET is_active = 0 WHERE client_id != ?",
                        (account.client_id,),
                    )
                conn.execute(
                    """
                    INSERT INTO accounts
                        (client_id, access_token, is_active, linked_at, last_synced_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(client_id) DO UPDATE SET
                        access_token = excluded.access_token,
                        is_active = excluded.is_active,
                        linked_at = excluded.linked_at,
                        last_synced_at = excluded.last_synced_at
                    """,
                    (
                        account.client_id, account.access_token,
                        int(account.is_active), account.linked_at,
                        account.last_synced_at,
                    ),
                )
            return account
        finally:
            conn.close()

    def update_last_synced(self, client_id: str, synced_at: str) -> None:
        conn = get_connection(self._db_path)
        try:
            with conn:
                conn.execute(
                    "UPDATE accounts SET last_synced_at = ? WHERE client_id = ?",
                    (synced_at, client_id),
                )
        finally:
            conn.close()

    # ── Read ─────────────────────────────────────────────────────────────

    def get_by_client_id(self, client_id: str) -> Optional[Account]:
        conn = get_connection(self._db_path)
        try:
            row = conn.execute(
                "SELECT * FROM accounts WHERE client_id = ?", (client_id,)
            ).fetchone()
            return _row_to_account(row) if row else None
        finally:
            conn.close()

    def get_active(self) -> Optional[Account]:
        """Return the active account, or ``None``."""
        conn = get_connection(self._db_path)
        try:
            row = conn.execute(
                "SELECT * FROM accounts WHERE is_active = 1 ORDER BY id DESC LIMIT 1"
            ).fetchone()
            return _row_to_account(row) if row else None
        finally:
            conn.close()

    def count(self) -> int:
        conn = get_connection(self._db_path)
        try:
            return conn.execute("SELECT COUNT(*) FROM accounts").fetchone()[0]
        finally:
            conn.close()

    def count_active(self) -> int:
        conn = get_connection(self._db_path)
        try:
            return conn.execute(
                "SELECT COUNT(*) FROM accounts WHERE is_active = 1"
            ).fetchone()[0]
        finally:
            conn.close()
