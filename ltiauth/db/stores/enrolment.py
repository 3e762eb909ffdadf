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
from ..core import async_session
from ..models import Enrolment, PublishedResource

logger = logging.getLogger(__name__)


class EnrolmentStore:
    """Enrolment and role assignment."""

    # noinspection PyMethodMayBeStatic
    async def enrol(self, account_id: str, resource_id: str, role: str) -> None:
        """Enrols an account in the resource's course, setting its role."""
        async with async_session.begin() as session:
            if (resource := await session.get(PublishedResource, resource_id)) is None:
                raise LookupError(resource_id)
            result = await session.execute(
                sa.select(Enrolment).where(
                    Enrolment.account_id == account_id,
                    Enrolment.resource_id == resource_id,
                )
            )
            if row := result.scalar():
                if row.role != role:
                    logger.info(
                        "role of [%s] in [%s] changed %s -> %s",
                        account_id,
                        resource.course_id,
                        row.role,
                        role,
                    )
                    row.role = role
            else:
                session.add(
                    Enrolment(
                        account_id=account_id,
                        resource_id=resource_id,
                        course_id=resource.course_id,
                        role=role,
                    )
                )

    # noinspection PyMethodMayBeStatic
    async def enrolment(
        self, account_id: str, resource_id: str
    ) -> schemas.Enrolment | None:
        stmt = sa.select(Enrolment).where(
            Enrolment.account_id == account_id,
            Enrolment.resource_id == resource_id,
        )
        async with async_session() as session:
            result = await session.execute(stmt)
            if row := result.scalar():
                return schemas.Enrolment.model_validate(row)
        return None

    # noinspection PyMethodMayBeStatic
    async def record_grade(
        self, account_id: str, resource_id: str, grade: float, graded_at: int
    ) -> bool:
        """Stores the latest grade of an enrolled account.

        Returns False, storing nothing, if the account is not enrolled.
        """
        stmt = sa.select(Enrolment).where(
            Enrolment.account_id == account_id,
            Enrolment.resource_id == resource_id,
        )
        async with async_session.begin() as session:
            result = await session.execute(stmt)
            if (row := result.scalar()) is None:
                return False
            row.grade = grade
            row.graded_at = graded_at
        return True

    async def is_user_visible(
        self, resource: schemas.PublishedResource, account_id: str
    ) -> bool:
        """Returns True if the account can see the resource."""
        if not resource.enabled:
            return False
        return await self.enrolment(account_id, resource.id) is not None
