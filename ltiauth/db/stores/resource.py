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

from ... import schemas
from ..core import async_session
from ..models import PublishedResource

logger = logging.getLogger(__name__)


class ResourceStore:
    """Published Resource lookup."""

    # noinspection PyMethodMayBeStatic
    async def get_resource(self, resource_id: str) -> schemas.PublishedResource | None:
        async with async_session() as session:
            if row := await session.get(PublishedResource, resource_id):
                return schemas.PublishedResource.model_validate(row)
        return None

    # noinspection PyMethodMayBeStatic
    async def save(self, resource: schemas.PublishedResource) -> None:
        async with async_session.begin() as session:
            await session.merge(PublishedResource(**resource.model_dump()))
