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
from ..models import (
    Context,
    Deployment,
    Enrolment,
    LtiUser,
    ResourceLink,
    UserResourceLink,
)

logger = logging.getLogger(__name__)


async def delete_deployment_graph(session: AsyncSession, deployment_id: str) -> None:
    """Removes a deployment and everything launched through it.

    Contexts, resource links and LTI users go with the deployment and the
    affected accounts are unenrolled from the resources they reached through
    it. Accounts and published resources are kept.
    """
    result = await session.execute(
        sa.select(LtiUser.id, LtiUser.local_id, LtiUser.resource_id).where(
            LtiUser.deployment_id == deployment_id
        )
    )
    users = result.all()
    link_ids = sa.select(ResourceLink.id).where(
        ResourceLink.deployment_id == deployment_id
    )
    await session.execute(
        sa.delete(UserResourceLink).where(
            sa.or_(
                UserResourceLink.lti_user_id.in_([u.id for u in users]),
                UserResourceLink.resource_link_id.in_(link_ids),
            )
        )
    )
    await session.execute(
        sa.delete(LtiUser).where(LtiUser.deployment_id == deployment_id)
    )
    await session.execute(
        sa.delete(ResourceLink).where(ResourceLink.deployment_id == deployment_id)
    )
    await session.execute(
        sa.delete(Context).where(Context.deployment_id == deployment_id)
    )

    for account_id, resource_id in {(u.local_id, u.resource_id) for u in users}:
        # still reachable through another deployment
        other = await session.execute(
            sa.select(LtiUser.id).where(
                LtiUser.local_id == account_id,
                LtiUser.resource_id == resource_id,
            )
        )
        if other.first() is None:
            await session.execute(
                sa.delete(Enrolment).where(
                    Enrolment.account_id == account_id,
                    Enrolment.resource_id == resource_id,
                )
            )

    await session.execute(sa.delete(Deployment).where(Deployment.id == deployment_id))
    logger.info("deleted deployment [%s] with %s lti users", deployment_id, len(users))


class DeploymentStore:
    """Deployment Repository."""

    # noinspection PyMethodMayBeStatic
    async def get(self, deployment_id: str) -> schemas.Deployment | None:
        async with async_session() as session:
            if row := await session.get(Deployment, deployment_id):
                return schemas.Deployment.model_validate(row)
        return None

    # noinspection PyMethodMayBeStatic
    async def find_by_registration(
        self, registration_id: str, deployment_id: str
    ) -> schemas.Deployment | None:
        stmt = sa.select(Deployment).where(
            Deployment.registration_id == registration_id,
            Deployment.deployment_id == deployment_id,
        )
        async with async_session() as session:
            result = await session.execute(stmt)
            if row := result.scalar():
                return schemas.Deployment.model_validate(row)
        return None

    # noinspection PyMethodMayBeStatic
    async def list_by_registration(
        self, registration_id: str
    ) -> list[schemas.Deployment]:
        stmt = sa.select(Deployment).where(
            Deployment.registration_id == registration_id
        )
        async with async_session() as session:
            result = await session.execute(stmt)
            return [schemas.Deployment.model_validate(r) for r in result.scalars()]

    # noinspection PyMethodMayBeStatic
    async def save(self, deployment: schemas.Deployment) -> schemas.Deployment:
        """Creates or updates a deployment.

        A second deployment with the same ``deployment_id`` under one
        registration raises ``IntegrityError``.
        """
        async with async_session.begin() as session:
            row = None
            if deployment.id is not None:
                row = await session.get(Deployment, deployment.id)
            if row is None:
                row = Deployment(
                    id=deployment.id or new_uuid(),
                    name=deployment.name,
                    deployment_id=deployment.deployment_id,
                    registration_id=deployment.registration_id,
                    legacy_consumer_key=deployment.legacy_consumer_key,
                )
                session.add(row)
            else:
                row.name = deployment.name
                row.legacy_consumer_key = deployment.legacy_consumer_key
            await session.flush()
            return schemas.Deployment.model_validate(row)

    # noinspection PyMethodMayBeStatic
    async def delete(self, deployment_id: str) -> None:
        async with async_session.begin() as session:
            await delete_deployment_graph(session, deployment_id)
