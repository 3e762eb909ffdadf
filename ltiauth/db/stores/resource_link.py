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
from ..models import ResourceLink

logger = logging.getLogger(__name__)


class ResourceLinkStore:
    """LTI Resource Link Repository."""

    # noinspection PyMethodMayBeStatic
    async def get(self, link_id: str) -> schemas.ResourceLink | None:
        async with async_session() as session:
            if row := await session.get(ResourceLink, link_id):
                return schemas.ResourceLink.model_validate(row)
        return None

    # noinspection PyMethodMayBeStatic
    async def find_by_resource_link_id(
        self, deployment_id: str, resource_link_id: str
    ) -> schemas.ResourceLink | None:
        stmt = sa.select(ResourceLink).where(
            ResourceLink.deployment_id == deployment_id,
            ResourceLink.resource_link_id == resource_link_id,
        )
        async with async_session() as session:
            result = await session.execute(stmt)
            if row := result.scalar():
                return schemas.ResourceLink.model_validate(row)
        return None

    # noinspection PyMethodMayBeStatic
    async def find_with_names_and_roles(self) -> list[schemas.ResourceLink]:
        """Returns all resource links that can be used for membership sync."""
        stmt = sa.select(ResourceLink).where(
            ResourceLink.nrps_context_memberships_url.is_not(None)
        )
        async with async_session() as session:
            result = await session.execute(stmt)
            return [schemas.ResourceLink.model_validate(r) for r in result.scalars()]

    # noinspection PyMethodMayBeStatic
    async def find_with_grade_service(self) -> list[schemas.ResourceLink]:
        """Returns all resource links that can be used for grade sync."""
        stmt = sa.select(ResourceLink).where(
            sa.or_(
                ResourceLink.ags_lineitem_url.is_not(None),
                ResourceLink.ags_lineitems_url.is_not(None),
            )
        )
        async with async_session() as session:
            result = await session.execute(stmt)
            return [schemas.ResourceLink.model_validate(r) for r in result.scalars()]

    # noinspection PyMethodMayBeStatic
    async def save(self, link: schemas.ResourceLink) -> schemas.ResourceLink:
        """Creates a resource link, else refreshes the existing one.

        Matching is on ``(deployment_id, resource_link_id)``.
        """
        stmt = sa.select(ResourceLink).where(
            ResourceLink.deployment_id == link.deployment_id,
            ResourceLink.resource_link_id == link.resource_link_id,
        )
        async with async_session.begin() as session:
            result = await session.execute(stmt)
            if (row := result.scalar()) is None:
                row = ResourceLink(
                    id=link.id or new_uuid(),
                    resource_link_id=link.resource_link_id,
                    deployment_id=link.deployment_id,
                )
                session.add(row)
            row.resource_id = link.resource_id
            row.context_id = link.context_id
            row.nrps_context_memberships_url = link.nrps_context_memberships_url
            row.nrps_service_versions = list(link.nrps_service_versions)
            row.ags_lineitems_url = link.ags_lineitems_url
            row.ags_lineitem_url = link.ags_lineitem_url
            row.ags_scopes = list(link.ags_scopes)
            await session.flush()
            return schemas.ResourceLink.model_validate(row)
