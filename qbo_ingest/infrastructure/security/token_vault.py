"""
Token vault - encrypted OAuth token storage and single-writer rotation.

QuickBooks refresh tokens are single-use: once exchanged, the old one stops
working. Two refreshes racing for the same connection would leave one of them
holding a dead token, so rotation is guarded twice:

- an in-process `asyncio.Lock` per connection serialises refreshes, and a
  caller that waited behind another refresh reuses its result instead of
  refreshing again;
- the write is a compare-and-swap on the token record's version, so a
  concurrent writer in another process is detected instead of overwritten.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional
from qbo_ingest.config import settings
from qbo_ingest.domain.exceptions import AuthRefreshError, ConnectionNotFoundError
from qbo_ingest.domain.models import TokenPair
from qbo_ingest.infrastructure.clients.qbo_oauth import OAuthClient
from qbo_ingest.infrastructure.database.repositories import ConnectionRepository, TokenRepository
from qbo_ingest.infrastructure.database.session import Database
from qbo_ingest.infrastructure.observability.metrics import token_refresh_counter
from qbo_ingest.infrastructure.security.token_cipher import TokenCipher

logger = logging.getLogger(__name__)


def _utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class TokenVault:
    """Get, refresh and store tokens for connected accounts"""

    def __init__(
        self,
        database: Database,
        oauth: OAuthClient | None = None,
        cipher: TokenCipher | None = None,
        expiry_skew_seconds: int | None = None,
    ):
        self.database = database
        self.oauth = oauth or OAuthClient()
        self.cipher = cipher or TokenCipher()
        self.expiry_skew = timedelta(
            seconds=settings.token_expiry_skew_seconds if expiry_skew_seconds is None else expiry_skew_seconds
        )
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, connection_id: str) -> asyncio.Lock:
        return self._locks.setdefault(str(connection_id), asyncio.Lock())

    async def get_valid_access_token(self, connection_id: str) -> str:
        """
        Decrypted access token for an outbound call.

        Tokens inside the expiry skew are refreshed first.

        Raises:
            AuthRefreshError: No usable token; the account must be re-authorized
        """
        async with self.database.session() as db:
            record = await TokenRepository(db).current(connection_id)
            if record is None:
                raise AuthRefreshError(f"No token stored for connection {connection_id}")
            access_token = self.cipher.decrypt(record.access_token_encrypted)
            expires_at = _utc(record.access_expires_at)

        if expires_at - self.expiry_skew > datetime.now(timezone.utc):
            return access_token
        return await self.refresh(connection_id, stale_access_token=access_token)

    async def refresh(self, connection_id: str, stale_access_token: Optional[str] = None) -> str:
        """
        Rotate the stored token pair and return the new access token.

        `stale_access_token` is the token the caller saw fail or expire. When
        the stored token no longer matches it, another caller has already
        rotated and the stored token is returned without calling the endpoint.

        Raises:
            AuthRefreshError: Endpoint rejected the refresh token, or it could not be decrypted
        """
        async with self._lock_for(connection_id):
            async with self.database.session() as db:
                record = await TokenRepository(db).current(connection_id)
                if record is None:
                    raise AuthRefreshError(f"No token stored for connection {connection_id}")
                token_id, version = record.id, record.version
                current_access = self.cipher.decrypt(record.access_token_encrypted)
                expires_at = _utc(record.access_expires_at)
                refresh_token = self.cipher.decrypt(record.refresh_token_encrypted)

            already_rotated = (
                stale_access_token is not None
                and current_access != stale_access_token
                and expires_at - self.expiry_skew > datetime.now(timezone.utc)
            )
            if already_rotated:
                token_refresh_counter.labels(outcome="coalesced").inc()
                return current_access

            try:
                pair = await self.oauth.refresh(refresh_token)
            except AuthRefreshError:
                token_refresh_counter.labels(outcome="failed").inc()
                logger.error("Token refresh rejected", extra={"connection_id": str(connection_id)})
                raise

            async with self.database.session() as db:
                repo = TokenRepository(db)
                access_at, refresh_at = self._expiry(pair)
                swapped = await repo.rotate(
                    token_id,
                    version,
                    self.cipher.encrypt(pair.access_token),
                    self.cipher.encrypt(pair.refresh_token),
                    access_at,
                    refresh_at,
                )
                if not swapped:
                    await db.rollback()
                    winner = await repo.current(connection_id)
                    token_refresh_counter.labels(outcome="coalesced").inc()
                    logger.warning(
                        "Token rotated concurrently; using stored token",
                        extra={"connection_id": str(connection_id)},
                    )
                    if winner is None:
                        raise AuthRefreshError(f"Token for connection {connection_id} was revoked during refresh")
                    return self.cipher.decrypt(winner.access_token_encrypted)
                await db.commit()

            token_refresh_counter.labels(outcome="refreshed").inc()
            logger.info("Token refreshed", extra={"connection_id": str(connection_id)})
            return pair.access_token

    async def authorize(self, connection_id: str, code: str) -> None:
        """Exchange an authorization code and store the first token pair"""
        async with self.database.session() as db:
            if await ConnectionRepository(db).get(connection_id) is None:
                raise ConnectionNotFoundError(f"Unknown connection {connection_id}")
        pair = await self.oauth.exchange_code(code)
        await self.store(connection_id, pair)

    async def store(self, connection_id: str, pair: TokenPair) -> None:
        """Encrypt and persist a token pair, logically revoking older records"""
        access_at, refresh_at = self._expiry(pair)
        async with self._lock_for(connection_id):
            async with self.database.session() as db:
                await TokenRepository(db).add(
                    connection_id,
                    self.cipher.encrypt(pair.access_token),
                    self.cipher.encrypt(pair.refresh_token),
                    access_at,
                    refresh_at,
                )
                await db.commit()

    async def revoke(self, connection_id: str) -> None:
        async with self._lock_for(connection_id):
            async with self.database.session() as db:
                await TokenRepository(db).revoke_all(connection_id)
                await db.commit()

    @staticmethod
    def _expiry(pair: TokenPair):
        now = datetime.now(timezone.utc)
        access_at = now + timedelta(seconds=pair.expires_in or settings.access_token_ttl_seconds)
        refresh_at = now + timedelta(seconds=pair.refresh_expires_in) if pair.refresh_expires_in else None
        return access_at, refresh_at
