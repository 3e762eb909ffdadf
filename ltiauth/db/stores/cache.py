# SCOOL LTI Launch and Identity Service
# Copyright (c) 2021-2024  Fresno State University, SCOOL Project Team
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

import datetime
import logging
from collections.abc import Callable

import sqlalchemy as sa

from ..core import IntegrityError, async_session, new_uuid
from ..models import Cache

logger = logging.getLogger(__name__)

NowFunc = Callable[[], datetime.datetime]


def utc_now() -> datetime.datetime:
    # we store without a timezone, so we produce a naive timestamp
    return datetime.datetime.now(tz=datetime.UTC).replace(tzinfo=None)


class CacheStore:
    """Cache Repository."""

    TTL_DEFAULT = 3600
    TTL_TYPE_FIXED = "fixed"
    TTL_TYPE_ROLLING = "rolling"

    def __init__(self, now_func: NowFunc = utc_now) -> None:
        self.now = now_func

    def _calc_expires(self, ttl: int) -> datetime.datetime:
        return self.now() + datetime.timedelta(seconds=ttl)

    def _is_live(self, entry: Cache) -> bool:
        return entry.expire_at > self.now()

    # noinspection PyMethodMayBeStatic
    def guid(self, prefix: str = "") -> str:
        return f"{prefix}{new_uuid()}"

    async def put(
        self,
        key: str,
        value: str,
        *,
        ttl: int = TTL_DEFAULT,
        ttl_type: str = TTL_TYPE_FIXED,
        append_guid: bool = False,
    ) -> str:
        """Updates an entry in the cache else creates a new entry."""
        await self.purge_expired()
        key = self.guid(key) if append_guid else key
        expire_at = self._calc_expires(ttl)
        async with async_session.begin() as session:
            if entry := await session.get(Cache, key):
                entry.value = value
                entry.ttl = ttl
                entry.ttl_type = ttl_type
                entry.expire_at = expire_at
            else:
                session.add(
                    Cache(
                        key=key,
                        value=value,
                        ttl=ttl,
                        ttl_type=ttl_type,
                        expire_at=expire_at,
                    )
                )
        return key

    async def add(
        self,
        key: str,
        value: str,
        *,
        ttl: int = TTL_DEFAULT,
        ttl_type: str = TTL_TYPE_FIXED,
        append_guid: bool = False,
    ) -> str | None:
        """Adds an entry to the cache.

        Returns the key if the entry was added, else None if the entry
        already exists.
        """
        await self.purge_expired()
        key = self.guid(key) if append_guid else key
        entry = Cache(
            key=key,
            value=value,
            ttl=ttl,
            ttl_type=ttl_type,
            expire_at=self._calc_expires(ttl),
        )
        async with async_session() as session:
            try:
                session.add(entry)
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return None
        return key

    async def get(self, key: str, default: str | None = None) -> str | None:
        """Returns an entry from the cache else ``default`` if no entry exists."""
        async with async_session.begin() as session:
            if entry := await session.get(Cache, key):
                if self._is_live(entry):
                    if entry.ttl_type == self.TTL_TYPE_ROLLING:
                        entry.expire_at = self._calc_expires(entry.ttl)
                    return entry.value

                await session.delete(entry)

        return default

    async def pop(self, key: str, default: str | None = None) -> str | None:
        """Returns an entry from the cache else ``default``.

        If the entry exists it will be removed from the cache.
        """
        async with async_session.begin() as session:
            if (entry := await session.get(Cache, key)) is None:
                return default

            value = entry.value if self._is_live(entry) else default
            await session.delete(entry)

        return value

    async def consume(self, key: str) -> str | None:
        """Returns and removes a live entry, else None.

        Only one caller can consume a given entry. When two requests race
        for the same key the loser sees ``None``.
        """
        async with async_session.begin() as session:
            result = await session.execute(
                sa.select(Cache.value).where(
                    Cache.key == key,
                    Cache.expire_at > self.now(),
                )
            )
            if (value := result.scalar()) is None:
                return None
            deleted = await session.execute(
                sa.delete(Cache).where(
                    Cache.key == key,
                    Cache.expire_at > self.now(),
                )
            )
            if deleted.rowcount != 1:
                logger.warning("cache entry [%s] consumed concurrently", key)
                return None
        return value

    async def delete(self, key: str) -> None:
        async with async_session.begin() as session:
            await session.execute(sa.delete(Cache).where(Cache.key == key))

    async def purge_expired(self) -> None:
        """Removes all entries that are expired."""
        stmt = sa.delete(Cache).where(Cache.expire_at <= self.now())
        async with async_session.begin() as session:
            await session.execute(stmt)
