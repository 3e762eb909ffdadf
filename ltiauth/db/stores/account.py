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

import logging

import sqlalchemy as sa

from ... import schemas
from ..core import async_session, new_uuid
from ..models import Account

logger = logging.getLogger(__name__)

PROFILE_FIELDS = (
    "firstname",
    "lastname",
    "email",
    "lang",
    "timezone",
    "city",
    "country",
    "institution",
    "maildisplay",
    "picture",
)


class AccountStore:
    """Local Account Repository."""

    # noinspection PyMethodMayBeStatic
    async def find_user(self, account_id: str) -> schemas.Account | None:
        async with async_session() as session:
            if row := await session.get(Account, account_id):
                return schemas.Account.model_validate(row)
        return None

    # noinspection PyMethodMayBeStatic
    async def find_user_by_username(self, username: str) -> schemas.Account | None:
        stmt = sa.select(Account).where(Account.username == username.lower())
        async with async_session() as session:
            result = await session.execute(stmt)
            if row := result.scalar():
                return schemas.Account.model_validate(row)
        return None

    # noinspection PyMethodMayBeStatic
    async def password_hash(self, username: str) -> tuple[str, str] | None:
        """Returns the account id and password hash for a login attempt."""
        stmt = sa.select(Account.id, Account.password_hash).where(
            Account.username == username.lower()
        )
        async with async_session() as session:
            result = await session.execute(stmt)
            if (row := result.first()) and row.password_hash:
                return row.id, row.password_hash
        return None

    # noinspection PyMethodMayBeStatic
    async def create_user(
        self, profile: schemas.Account, password_hash: str | None = None
    ) -> str:
        """Creates an account and returns its id.

        A taken ``username`` raises ``IntegrityError``.
        """
        row = Account(
            id=new_uuid(),
            username=profile.username,
            auth=profile.auth,
            password_hash=password_hash,
            confirmed=profile.confirmed,
            **{f: getattr(profile, f) for f in PROFILE_FIELDS},
        )
        async with async_session.begin() as session:
            session.add(row)
        logger.info("created account %r", row)
        return row.id

    # noinspection PyMethodMayBeStatic
    async def update_user(self, profile: schemas.Account) -> None:
        """Updates the profile fields of an existing account."""
        if profile.id is None:
            raise ValueError("ACCOUNT_NOT_PERSISTED")
        async with async_session.begin() as session:
            if (row := await session.get(Account, profile.id)) is None:
                raise LookupError(profile.id)
            for field in PROFILE_FIELDS:
                setattr(row, field, getattr(profile, field))
