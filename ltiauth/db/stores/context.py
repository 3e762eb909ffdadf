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
from ..models import Context, ResourceLink

logger = logging.getLogger(__name__)


class ContextStore:
    """LTI Context Repository."""

    # noinspection PyMethodMayBeStatic
    async def get(self, context_id: str) -> schemas.Context | None:
        async with async_session() as session:
            if row := await session.get(Context, context_id):
                return schemas.Context.model_validate(row)
        return None

    # noinspection PyMethodMayBeStatic
    async def find_by_context_id(
        self, deployment_id: str, context_id: str
    ) -> schemas.Context | None:
        """Returns a context by the platform ``context_id`` within a deployment."""
        stmt = sa.select(Context).where(
            Context.deployment_id == deployment_id,
            Context.context_id == context_id,
        )
        async with async_session() as session:
            result = await session.execute(stmt)
            if row := result.scalar():
                return schemas.Context.model_validate(row)
        return None

    # noinspection PyMethodMayBeStatic
    async def save(self, context: schemas.Context) -> schemas.Context:
        """Creates a context, else refreshes the ``types`` of the existing one.

        The existing row is matched on ``(deployment_id, context_id)`` so a
        relaunch never adds a second row.
        """
        stmt = sa.select(Context).where(
            Context.deployment_id == context.deployment_id,
            Context.context_id == context.context_id,
        )
        async with async_session.begin() as session:
            result = await session.execute(stmt)
            if row := result.scalar():
                row.types = list(context.types)
            else:
                row = Context(
                    id=context.id or new_uuid(),
                    deployment_id=context.deployment_id,
                    context_id=context.context_id,
                    types=list(context.types),
                )
                session.add(row)
            await session.flush()
            return schemas.Context.model_validate(row)

    # noinspection PyMethodMayBeStatic
    async def delete(self, context_id: str) -> None:
        """Removes a context, detaching any resource links that used it."""
        async with async_session.begin() as session:
            await session.execute(
                sa.update(ResourceLink)
                .where(ResourceLink.context_id == context_id)
                .values(context_id=None)
            )
            await session.execute(sa.delete(Context).where(Context.id == context_id))
