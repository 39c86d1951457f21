"""
Persistence for Gmail connections.

Tokens are Fernet-encrypted on the way in and decrypted on the way out, so
callers only ever see GmailConnection with plain credentials.
"""

from datetime import datetime

from mailsync.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one, with_db_retry
from mailsync.infrastructure.observability.logging import get_logger
from mailsync.models.domain.connection_domain import GmailConnection
from mailsync.services.infrastructure.encryption_service import (
    EncryptionError,
    decrypt_token,
    encrypt_token,
)

logger = get_logger(__name__)


class ConnectionRepositoryError(DatabaseError):
    """Stored connection row could not be read or written."""


class ConnectionRepository:
    """Persistence helpers for the gmail_connections table."""

    SELECT_COLUMNS = """
        id, user_id, email_address, access_token, refresh_token,
        token_expiry, scope, is_active, last_sync_at, created_at, updated_at
    """

    @classmethod
    def _row_to_connection(cls, row: dict | None) -> GmailConnection | None:
        if not row:
            return None

        try:
            access_token = decrypt_token(row["access_token"])
            refresh_token = decrypt_token(row["refresh_token"])
        except EncryptionError as e:
            logger.error(
                "Stored Gmail tokens could not be decrypted",
                connection_id=row.get("id"),
                error=str(e),
            )
            raise ConnectionRepositoryError(
                f"Token decryption failed for connection {row.get('id')}",
                operation="decrypt_connection",
                recoverable=False,
            ) from e

        return GmailConnection(
            id=row["id"],
            user_id=str(row["user_id"]),
            email_address=row["email_address"],
            access_token=access_token,
            refresh_token=refresh_token,
            token_expiry=row.get("token_expiry"),
            scope=row.get("scope") or "",
            is_active=row["is_active"],
            last_sync_at=row.get("last_sync_at"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def get(self, connection_id: int, user_id: str) -> GmailConnection | None:
        """Return the user's connection regardless of its active flag."""
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM gmail_connections
            WHERE id = %s AND user_id = %s
        """
        row = await fetch_one(query, (connection_id, user_id))
        return self._row_to_connection(row)

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def get_active(self, connection_id: int, user_id: str) -> GmailConnection | None:
        """Return the connection only if it belongs to the user and is active."""
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM gmail_connections
            WHERE id = %s AND user_id = %s AND is_active = true
        """
        row = await fetch_one(query, (connection_id, user_id))
        return self._row_to_connection(row)

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def upsert(
        self,
        user_id: str,
        email_address: str,
        access_token: str,
        refresh_token: str,
        token_expiry: datetime | None,
        scope: str,
    ) -> GmailConnection:
        """
        Insert or update the connection for (user_id, email_address).

        Reconnecting the same mailbox keeps the row id, replaces the
        credentials and re-activates it.
        """
        query = f"""
            INSERT INTO gmail_connections (
                user_id, email_address, access_token, refresh_token,
                token_expiry, scope, is_active
            ) VALUES (%s, %s, %s, %s, %s, %s, true)
            ON CONFLICT (user_id, email_address)
            DO UPDATE SET
                access_token = EXCLUDED.access_token,
                refresh_token = EXCLUDED.refresh_token,
                token_expiry = EXCLUDED.token_expiry,
                scope = EXCLUDED.scope,
                is_active = true,
                updated_at = NOW()
            RETURNING {self.SELECT_COLUMNS}
        """
        row = await fetch_one(
            query,
            (
                user_id,
                email_address.lower(),
                encrypt_token(access_token),
                encrypt_token(refresh_token),
                token_expiry,
                scope,
            ),
        )
        if not row:
            raise ConnectionRepositoryError("Failed to upsert Gmail connection", operation="upsert")

        logger.info(
            "Gmail connection stored",
            user_id=user_id,
            connection_id=row["id"],
            token_expiry=token_expiry.isoformat() if token_expiry else None,
        )
        return self._row_to_connection(row)

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def update_tokens(
        self,
        connection_id: int,
        access_token: str,
        refresh_token: str,
        token_expiry: datetime | None,
        scope: str | None = None,
    ) -> GmailConnection:
        """Persist refreshed credentials and return the updated connection."""
        query = f"""
            UPDATE gmail_connections
            SET access_token = %s,
                refresh_token = %s,
                token_expiry = %s,
                scope = COALESCE(%s, scope),
                updated_at = NOW()
            WHERE id = %s
            RETURNING {self.SELECT_COLUMNS}
        """
        row = await fetch_one(
            query,
            (
                encrypt_token(access_token),
                encrypt_token(refresh_token),
                token_expiry,
                scope or None,
                connection_id,
            ),
        )
        if not row:
            raise ConnectionRepositoryError(
                f"Gmail connection {connection_id} disappeared during token update",
                operation="update_tokens",
                recoverable=False,
            )
        return self._row_to_connection(row)

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def mark_inactive(self, connection_id: int) -> None:
        query = """
            UPDATE gmail_connections
            SET is_active = false,
                updated_at = NOW()
            WHERE id = %s
        """
        await execute_query(query, (connection_id,))
        logger.warning("Gmail connection deactivated", connection_id=connection_id)

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def delete(self, connection_id: int, user_id: str) -> bool:
        """Remove the connection row; its sync log rows cascade."""
        query = "DELETE FROM gmail_connections WHERE id = %s AND user_id = %s"
        affected = await execute_query(query, (connection_id, user_id))
        return affected > 0

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def list_active_for_user(self, user_id: str) -> list[GmailConnection]:
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM gmail_connections
            WHERE user_id = %s AND is_active = true
            ORDER BY created_at DESC
        """
        rows = await fetch_all(query, (user_id,))
        return [self._row_to_connection(row) for row in rows]

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def list_all_active(self) -> list[GmailConnection]:
        """Every active connection, oldest sync first (worker job)."""
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM gmail_connections
            WHERE is_active = true
            ORDER BY last_sync_at ASC NULLS FIRST
        """
        rows = await fetch_all(query)
        return [self._row_to_connection(row) for row in rows]

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def touch_last_sync(self, connection_id: int) -> None:
        query = """
            UPDATE gmail_connections
            SET last_sync_at = NOW()
            WHERE id = %s
        """
        await execute_query(query, (connection_id,))
