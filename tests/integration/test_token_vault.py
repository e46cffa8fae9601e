"""Integration tests for encrypted token storage and rotation"""

import asyncio
import pytest
from datetime import datetime, timedelta, timezone
from cryptography.fernet import Fernet
from sqlalchemy import select, update
from qbo_ingest.domain.exceptions import AuthRefreshError, ConnectionNotFoundError, EncryptionError
from qbo_ingest.domain.models import TokenPair
from qbo_ingest.infrastructure.database.models import QBOToken
from qbo_ingest.infrastructure.database.repositories import TokenRepository
from qbo_ingest.infrastructure.security.token_cipher import TokenCipher
from qbo_ingest.infrastructure.security.token_vault import TokenVault


async def expire_tokens(database, connection_id):
    async with database.session() as db:
        await db.execute(
            update(QBOToken).values(access_expires_at=datetime.now(timezone.utc) - timedelta(minutes=5))
        )
        await db.commit()


async def test_store_encrypts_and_get_returns_plaintext(vault, database, make_connection):
    account = await make_connection()

    await vault.store(account.id, TokenPair(access_token="access-0", refresh_token="refresh-0"))

    async with database.session() as db:
        record = await TokenRepository(db).current(account.id)
    assert record.access_token_encrypted != "access-0"
    assert "refresh-0" not in record.refresh_token_encrypted
    assert await vault.get_valid_access_token(account.id) == "access-0"


async def test_store_revokes_previous_records(vault, database, make_connection):
    account = await make_connection()

    await vault.store(account.id, TokenPair(access_token="access-a", refresh_token="refresh-a"))
    await vault.store(account.id, TokenPair(access_token="access-b", refresh_token="refresh-b"))

    async with database.session() as db:
        records = (await db.execute(select(QBOToken).order_by(QBOToken.id))).scalars().all()
    assert [r.revoked for r in records] == [True, False]
    assert await vault.get_valid_access_token(account.id) == "access-b"


async def test_missing_token_requires_reauthorization(vault, make_connection):
    account = await make_connection()

    with pytest.raises(AuthRefreshError):
        await vault.get_valid_access_token(account.id)


async def test_expired_token_is_refreshed_before_use(vault, oauth, database, make_connection):
    account = await make_connection()
    await vault.store(account.id, TokenPair(access_token="access-0", refresh_token="refresh-0"))
    await expire_tokens(database, account.id)

    token = await vault.get_valid_access_token(account.id)

    assert token == "access-1"
    oauth.refresh.assert_awaited_once_with("refresh-0")
    async with database.session() as db:
        record = await TokenRepository(db).current(account.id)
    assert record.version == 2
    assert vault.cipher.decrypt(record.refresh_token_encrypted) == "refresh-1"


async def test_concurrent_refreshes_are_coalesced(vault, oauth, make_connection):
    """Callers that saw the same stale token trigger a single rotation"""
    account = await make_connection()
    await vault.store(account.id, TokenPair(access_token="access-0", refresh_token="refresh-0"))

    tokens = await asyncio.gather(
        *(vault.refresh(account.id, stale_access_token="access-0") for _ in range(5))
    )

    assert tokens == ["access-1"] * 5
    assert oauth.refresh.await_count == 1


async def test_rotation_lost_to_another_writer_uses_stored_token(vault, oauth, database, cipher, make_connection):
    """Compare-and-swap: a concurrent rotation elsewhere is never overwritten"""
    account = await make_connection()
    await vault.store(account.id, TokenPair(access_token="access-0", refresh_token="refresh-0"))

    async def rotated_elsewhere(refresh_token):
        async with database.session() as db:
            record = await TokenRepository(db).current(account.id)
            await TokenRepository(db).rotate(
                record.id,
                record.version,
                cipher.encrypt("access-other"),
                cipher.encrypt("refresh-other"),
                datetime.now(timezone.utc) + timedelta(hours=1),
            )
            await db.commit()
        return TokenPair(access_token="access-mine", refresh_token="refresh-mine")

    oauth.refresh.side_effect = rotated_elsewhere

    token = await vault.refresh(account.id, stale_access_token="access-0")

    assert token == "access-other"
    async with database.session() as db:
        record = await TokenRepository(db).current(account.id)
    assert cipher.decrypt(record.refresh_token_encrypted) == "refresh-other"


async def test_rejected_refresh_propagates(vault, oauth, make_connection):
    account = await make_connection()
    await vault.store(account.id, TokenPair(access_token="access-0", refresh_token="refresh-0"))
    oauth.refresh.side_effect = AuthRefreshError("Token grant refresh_token rejected: 400")

    with pytest.raises(AuthRefreshError):
        await vault.refresh(account.id, stale_access_token="access-0")

    assert await vault.get_valid_access_token(account.id) == "access-0"


async def test_token_under_another_key_is_unreadable(database, oauth, make_connection, vault):
    account = await make_connection()
    await vault.store(account.id, TokenPair(access_token="access-0", refresh_token="refresh-0"))
    rekeyed = TokenVault(database, oauth=oauth, cipher=TokenCipher(Fernet.generate_key()))

    with pytest.raises(EncryptionError):
        await rekeyed.get_valid_access_token(account.id)


async def test_authorize_exchanges_code(vault, oauth, make_connection):
    account = await make_connection()

    await vault.authorize(account.id, "auth-code")

    oauth.exchange_code.assert_awaited_once_with("auth-code")
    assert await vault.get_valid_access_token(account.id) == "access-1"


async def test_authorize_unknown_connection(vault, oauth):
    with pytest.raises(ConnectionNotFoundError):
        await vault.authorize("7a4b5d0e-0000-4000-8000-000000000000", "auth-code")

    oauth.exchange_code.assert_not_awaited()


async def test_revoke_forces_reauthorization(vault, make_connection):
    account = await make_connection()
    await vault.store(account.id, TokenPair(access_token="access-0", refresh_token="refresh-0"))

    await vault.revoke(account.id)

    with pytest.raises(AuthRefreshError):
        await vault.get_valid_access_token(account.id)
