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

import hashlib
import logging

import sqlalchemy as sa

from ... import schemas
from ..core import IntegrityError, async_session
from ..models import LegacyConsumerSecret
from .account import AccountStore

logger = logging.getLogger(__name__)

LEGACY_USERNAME_PREFIX = "enrol_lti"


def legacy_username(consumer_key: str, legacy_user_id: str) -> str:
    """Returns the username given to users of an LTI 1.1 consumer."""
    digest = hashlib.sha1(  # noqa: S324
        f"{consumer_key}::{consumer_key}:{legacy_user_id}".encode()
    ).hexdigest()
    return LEGACY_USERNAME_PREFIX + digest


class LegacyStore:
    """LTI 1.1 consumer secrets and users."""

    def __init__(self, accounts: AccountStore | None = None) -> None:
        self.accounts = accounts or AccountStore()

    # noinspection PyMethodMayBeStatic
    async def secrets_for(self, consumer_key: str) -> list[str]:
        stmt = sa.select(LegacyConsumerSecret.secret).where(
            LegacyConsumerSecret.consumer_key == consumer_key
        )
        async with async_session() as session:
            result = await session.execute(stmt)
            return list(result.scalars())

    # noinspection PyMethodMayBeStatic
    async def add_secret(self, consumer_key: str, secret: str) -> None:
        async with async_session() as session:
            try:
                session.add(
                    LegacyConsumerSecret(consumer_key=consumer_key, secret=secret)
                )
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info("secret already known for consumer [%s]", consumer_key)

    async def find_by_consumer(
        self, consumer_key: str, legacy_user_id: str
    ) -> schemas.Account | None:
        """Returns the local account of a legacy user, if there is one."""
        username = legacy_username(consumer_key, legacy_user_id)
        return await self.accounts.find_user_by_username(username)
