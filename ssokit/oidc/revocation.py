"""TTL-bounded revocation list keyed by access token ``jti``."""

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from ssokit.core.clock import Clock, utcnow
from ssokit.db.engine import storage_guard
from ssokit.db.repo_oauth import (
    add_revoked_jti,
    delete_expired_revocations,
    is_jti_revoked,
)

logger = logging.getLogger(__name__)


class RevocationList:
    """Revoked ``jti`` values, each kept only until its token's ``exp``."""

    def __init__(
        self, *, storage_timeout: float | None = None, clock: Clock = utcnow
    ) -> None:
        self._storage_timeout = storage_timeout
        self._clock = clock

    async def revoke(
        self, session: AsyncSession, jti: str, expires_at: datetime
    ) -> None:
        now = self._clock()
        async with storage_guard(self._storage_timeout):
            await delete_expired_revocations(session, now)
            if expires_at <= now:
                return
            await add_revoked_jti(session, jti, expires_at)
        logger.info("Revoked access token jti=%s", jti)

    async def is_revoked(self, session: AsyncSession, jti: str) -> bool:
        async with storage_guard(self._storage_timeout):
            return await is_jti_revoked(session, jti)

    async def purge_expired(self, session: AsyncSession) -> int:
        async with storage_guard(self._storage_timeout):
            return await delete_expired_revocations(session, self._clock())
