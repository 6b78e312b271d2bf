"""Signing key lifecycle: generation, activation, rotation, retirement, purge.

Rotation follows a publish-before-sign order. The new key is first stored as
``pending``, which already makes it part of ``list_verifiable_keys()`` and so
of the published JWKS. Only after that commit does a second transaction retire
the previous signer and activate the new key. Readers see either the old or
the new signer, never zero or two.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ssokit.core.clock import Clock, as_utc, utcnow
from ssokit.core.errors import NoActiveKeyError, StorageUnavailableError
from ssokit.core.settings import AuthSettings
from ssokit.crypto.keys import PrivateKeyVault, generate_rsa_keypair
from ssokit.crypto.types import (
    SIGNING_ALGORITHM,
    ActiveSigningKey,
    KeyStatus,
    PublicKeyView,
    SigningKeyData,
)
from ssokit.db import repo_keys
from ssokit.db.engine import storage_guard
from ssokit.db.models_keys import SigningKeyEntity

logger = logging.getLogger(__name__)


def _public_view(entity: SigningKeyEntity) -> PublicKeyView:
    return PublicKeyView(
        kid=entity.kid,
        algorithm=entity.algorithm,
        public_key_pem=entity.public_key_pem,
        status=KeyStatus(entity.status),
        created_at=as_utc(entity.created_at),
        retired_at=as_utc(entity.retired_at) if entity.retired_at else None,
    )


class KeyManager:
    """Owns the RSA signing keys of the Authorization Server."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        encryption_key: str,
        grace_period: timedelta,
        auto_generate: bool = True,
        storage_timeout: float | None = None,
        clock: Clock = utcnow,
    ) -> None:
        if not encryption_key:
            raise ValueError("a Fernet key is required to store signing keys")
        self._session_factory = session_factory
        self._vault = PrivateKeyVault(encryption_key)
        self._grace_period = grace_period
        self._auto_generate = auto_generate
        self._storage_timeout = storage_timeout
        self._clock = clock
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        settings: AuthSettings,
    ) -> "KeyManager":
        return cls(
            session_factory,
            encryption_key=settings.signing_key_encryption_key,
            grace_period=timedelta(seconds=settings.key_grace_period),
            auto_generate=settings.auto_generate_keys,
            storage_timeout=settings.storage_timeout,
        )

    @property
    def grace_period(self) -> timedelta:
        return self._grace_period

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        async with storage_guard(self._storage_timeout):
            async with self._session_factory() as session, session.begin():
                yield session

    def _new_entity(
        self, keypair: SigningKeyData, status: KeyStatus, now: datetime
    ) -> SigningKeyEntity:
        return SigningKeyEntity(
            kid=keypair.kid,
            algorithm=SIGNING_ALGORITHM,
            private_key_pem=self._vault.seal(keypair.private_key_pem),
            public_key_pem=keypair.public_key_pem,
            status=status.value,
            created_at=now,
            activated_at=now if status is KeyStatus.ACTIVE else None,
        )

    async def initialize(self) -> PublicKeyView:
        """Create the first active key if none exists; return the signer."""
        async with self._lock:
            async with self._transaction() as session:
                active = await repo_keys.get_active_key(session)
                if active is not None:
                    return _public_view(active)
            keypair = await asyncio.to_thread(generate_rsa_keypair)
            async with self._transaction() as session:
                entity = self._new_entity(keypair, KeyStatus.ACTIVE, self._clock())
                await repo_keys.store_key(session, entity)
                logger.info("Generated initial signing key kid=%s", entity.kid)
                return _public_view(entity)

    async def _load_active(self) -> ActiveSigningKey | None:
        async with self._transaction() as session:
            entity = await repo_keys.get_active_key(session)
            if entity is None:
                return None
            return ActiveSigningKey(
                kid=entity.kid,
                algorithm=entity.algorithm,
                private_key_pem=self._vault.unseal(entity.private_key_pem),
                public_key_pem=entity.public_key_pem,
            )

    async def get_active_key(self) -> ActiveSigningKey:
        """Return the current signer with its decrypted private key."""
        key = await self._load_active()
        if key is not None:
            return key
        if not self._auto_generate:
            raise NoActiveKeyError("no active signing key")
        await self.initialize()
        key = await self._load_active()
        if key is None:
            raise NoActiveKeyError("signing key initialization did not persist")
        return key

    async def rotate(self) -> PublicKeyView:
        """Publish a new key, then make it the signer and retire the old one."""
        async with self._lock:
            keypair = await asyncio.to_thread(generate_rsa_keypair)
            now = self._clock()
            async with self._transaction() as session:
                entity = self._new_entity(keypair, KeyStatus.PENDING, now)
                await repo_keys.store_key(session, entity)
            logger.info("Published pending signing key kid=%s", keypair.kid)

            try:
                async with self._transaction() as session:
                    previous = await repo_keys.get_active_key(session)
                    previous_kid = previous.kid if previous is not None else None
                    await repo_keys.swap_active_key(session, keypair.kid, now)
            except Exception:
                await self._withdraw_pending(keypair.kid)
                raise
            logger.info(
                "Rotated signing key: active kid=%s, retired kid=%s",
                keypair.kid,
                previous_kid,
            )
            return PublicKeyView(
                kid=keypair.kid,
                public_key_pem=keypair.public_key_pem,
                status=KeyStatus.ACTIVE,
                created_at=now,
            )

    async def _withdraw_pending(self, kid: str) -> None:
        try:
            async with self._transaction() as session:
                await repo_keys.delete_keys(session, [kid])
        except Exception:
            logger.exception(
                "Could not withdraw pending signing key kid=%s; purge will remove it",
                kid,
            )
            return
        logger.warning("Activation failed; withdrew pending signing key kid=%s", kid)

    def _is_verifiable(self, entity: SigningKeyEntity, now: datetime) -> bool:
        if entity.status == KeyStatus.PENDING.value:
            # A pending key outlives its rotation only when activation failed.
            return as_utc(entity.created_at) + self._grace_period >= now
        if entity.status != KeyStatus.RETIRED.value:
            return True
        if entity.retired_at is None:
            return False
        return as_utc(entity.retired_at) + self._grace_period >= now

    async def list_verifiable_keys(self) -> list[PublicKeyView]:
        """Pending, active, and retired-within-grace keys, newest first."""
        now = self._clock()
        async with self._transaction() as session:
            keys = await repo_keys.get_all_keys(session)
            return [_public_view(k) for k in keys if self._is_verifiable(k, now)]

    async def purge_expired_retired(self) -> list[str]:
        """Delete keys past their grace period; returns purged kids.

        Besides retired keys this also drops pending keys whose activation
        never happened.
        """
        now = self._clock()
        async with self._transaction() as session:
            candidates = await repo_keys.get_retired_keys(session)
            candidates += await repo_keys.get_pending_keys(session)
            expired = [k.kid for k in candidates if not self._is_verifiable(k, now)]
            await repo_keys.delete_keys(session, expired)
        if expired:
            logger.info("Purged %d expired signing key(s): %s", len(expired), expired)
        return expired

    async def run_purge_schedule(self, interval: float) -> None:
        """Purge expired keys every ``interval`` seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            try:
                await self.purge_expired_retired()
            except StorageUnavailableError:
                logger.warning("Scheduled signing key purge failed; will retry")
            except Exception:
                logger.exception("Scheduled signing key purge crashed; will retry")
