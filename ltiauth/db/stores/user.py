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
from sqlalchemy.ext.asyncio import AsyncSession

from ... import schemas
from ..core import async_session, new_uuid
from ..models import Account, LtiUser, UserResourceLink

logger = logging.getLogger(__name__)


def _to_schema(
    row: LtiUser, account: Account | None, resource_link_id: str | None = None
) -> schemas.LtiUser:
    profile = {}
    if account is not None:
        profile = {
            "firstname": account.firstname,
            "lastname": account.lastname,
            "username": account.username,
            "email": account.email,
            "lang": account.lang,
            "city": account.city,
            "country": account.country,
            "institution": account.institution,
            "timezone": account.timezone,
            "maildisplay": account.maildisplay,
        }
    return schemas.LtiUser(
        id=row.id,
        resource_id=row.resource_id,
        deployment_id=row.deployment_id,
        source_id=row.source_id,
        local_id=row.local_id,
        lastgrade=row.lastgrade,
        lastaccess=row.lastaccess,
        resource_link_id=resource_link_id,
        **profile,
    )


class LtiUserStore:
    """LTI User Repository.

    An LTI user is unique per ``(resource_id, deployment_id, source_id)``.
    Its ``local_id`` is fixed by the first save and can not be pointed at a
    different account afterwards.
    """

    # noinspection PyMethodMayBeStatic
    async def get(self, user_id: str) -> schemas.LtiUser | None:
        async with async_session() as session:
            if row := await session.get(LtiUser, user_id):
                account = await session.get(Account, row.local_id)
                return _to_schema(row, account)
        return None

    # noinspection PyMethodMayBeStatic
    async def find_by_source(
        self, resource_id: str, deployment_id: str, source_id: str
    ) -> schemas.LtiUser | None:
        async with async_session() as session:
            if row := await self._find(session, resource_id, deployment_id, source_id):
                account = await session.get(Account, row.local_id)
                return _to_schema(row, account)
        return None

    # noinspection PyMethodMayBeStatic
    async def find_by_resource_link(self, link_id: str) -> list[schemas.LtiUser]:
        stmt = (
            sa.select(LtiUser, Account)
            .join(UserResourceLink, UserResourceLink.lti_user_id == LtiUser.id)
            .join(Account, Account.id == LtiUser.local_id)
            .where(UserResourceLink.resource_link_id == link_id)
        )
        async with async_session() as session:
            result = await session.execute(stmt)
            return [_to_schema(u, a, link_id) for u, a in result.all()]

    # noinspection PyMethodMayBeStatic
    async def find_by_deployment(self, deployment_id: str) -> list[schemas.LtiUser]:
        stmt = (
            sa.select(LtiUser, Account)
            .join(Account, Account.id == LtiUser.local_id)
            .where(LtiUser.deployment_id == deployment_id)
        )
        async with async_session() as session:
            result = await session.execute(stmt)
            return [_to_schema(u, a) for u, a in result.all()]

    async def save(self, user: schemas.LtiUser) -> schemas.LtiUser:
        """Creates or refreshes an LTI user.

        Raises ``ValueError`` when a new user has no ``local_id`` or when an
        existing user would be moved to a different local account.
        """
        async with async_session.begin() as session:
            row = await self._find(
                session, user.resource_id, user.deployment_id, user.source_id
            )
            if row is None:
                if user.local_id is None:
                    raise ValueError("LOCAL_ID_REQUIRED", user.source_id)
                row = LtiUser(
                    id=user.id or new_uuid(),
                    resource_id=user.resource_id,
                    deployment_id=user.deployment_id,
                    source_id=user.source_id,
                    local_id=user.local_id,
                )
                session.add(row)
            elif user.local_id is not None and user.local_id != row.local_id:
                logger.error(
                    "refusing to move lti user [%s] from account [%s] to [%s]",
                    row.id,
                    row.local_id,
                    user.local_id,
                )
                raise ValueError("LOCAL_ID_IMMUTABLE", row.id)

            if user.lastgrade is not None:
                row.lastgrade = user.lastgrade
            if user.lastaccess is not None:
                row.lastaccess = user.lastaccess
            await session.flush()

            if user.resource_link_id is not None:
                await self._link(session, row.id, user.resource_link_id)

            account = await session.get(Account, row.local_id)
            return _to_schema(row, account, user.resource_link_id)

    # noinspection PyMethodMayBeStatic
    async def delete(self, user_id: str) -> None:
        async with async_session.begin() as session:
            await session.execute(
                sa.delete(UserResourceLink).where(
                    UserResourceLink.lti_user_id == user_id
                )
            )
            await session.execute(sa.delete(LtiUser).where(LtiUser.id == user_id))

    # noinspection PyMethodMayBeStatic
    async def _find(
        self,
        session: AsyncSession,
        resource_id: str,
        deployment_id: str,
        source_id: str,
    ) -> LtiUser | None:
        result = await session.execute(
            sa.select(LtiUser).where(
                LtiUser.resource_id == resource_id,
                LtiUser.deployment_id == deployment_id,
                LtiUser.source_id == source_id,
            )
        )
        return result.scalar()

    # noinspection PyMethodMayBeStatic
    async def _link(
        self, session: AsyncSession, lti_user_id: str, resource_link_id: str
    ) -> None:
        result = await session.execute(
            sa.select(UserResourceLink.id).where(
                UserResourceLink.lti_user_id == lti_user_id,
                UserResourceLink.resource_link_id == resource_link_id,
            )
        )
        if result.first() is None:
            session.add(
                UserResourceLink(
                    lti_user_id=lti_user_id,
                    resource_link_id=resource_link_id,
                )
            )
            await session.flush()
