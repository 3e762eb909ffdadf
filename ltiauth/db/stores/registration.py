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
from ..models import AppRegistration, Deployment
from .deployment import delete_deployment_graph

logger = logging.getLogger(__name__)


class RegistrationStore:
    """Application Registration Repository.

    Holds the per-platform credential material used to verify launches.
    """

    # noinspection PyMethodMayBeStatic
    async def get(self, registration_id: str) -> schemas.ApplicationRegistration | None:
        async with async_session() as session:
            if row := await session.get(AppRegistration, registration_id):
                return schemas.ApplicationRegistration.model_validate(row)
        return None

    # noinspection PyMethodMayBeStatic
    async def find_by_issuer(
        self, issuer: str, client_id: str | None = None
    ) -> list[schemas.ApplicationRegistration]:
        """Returns the registrations for an issuer.

        Several registrations can share one issuer, so the ``client_id``
        narrows it down when the caller knows it.
        """
        stmt = sa.select(AppRegistration).where(
            AppRegistration.platform_issuer == issuer
        )
        if client_id is not None:
            stmt = stmt.where(AppRegistration.client_id == client_id)
        async with async_session() as session:
            result = await session.execute(stmt)
            return [
                schemas.ApplicationRegistration.model_validate(r)
                for r in result.scalars()
            ]

    async def find_one(
        self, issuer: str, client_id: str | None = None
    ) -> schemas.ApplicationRegistration | None:
        """Returns the single registration matching, else None."""
        found = await self.find_by_issuer(issuer, client_id)
        if len(found) == 1:
            return found[0]
        if found:
            logger.warning(
                "issuer [%s] has %s registrations and no client_id was given",
                issuer,
                len(found),
            )
        return None

    # noinspection PyMethodMayBeStatic
    async def save(
        self, registration: schemas.ApplicationRegistration
    ) -> schemas.ApplicationRegistration:
        """Creates a registration, else updates its name and endpoint URLs."""
        async with async_session.begin() as session:
            row = None
            if registration.id is not None:
                row = await session.get(AppRegistration, registration.id)
            if row is None:
                row = AppRegistration(
                    id=registration.id or new_uuid(),
                    name=registration.name,
                    platform_issuer=registration.platform_issuer,
                    client_id=registration.client_id,
                )
                session.add(row)
            row.name = registration.name
            row.auth_request_url = str(registration.auth_request_url)
            row.jwks_url = str(registration.jwks_url)
            row.access_token_url = (
                str(registration.access_token_url)
                if registration.access_token_url
                else None
            )
            await session.flush()
            return schemas.ApplicationRegistration.model_validate(row)

    # noinspection PyMethodMayBeStatic
    async def delete(self, registration_id: str) -> None:
        """Removes a registration along with all of its deployments."""
        async with async_session.begin() as session:
            result = await session.execute(
                sa.select(Deployment.id).where(
                    Deployment.registration_id == registration_id
                )
            )
            for deployment_id in result.scalars().all():
                await delete_deployment_graph(session, deployment_id)
            await session.execute(
                sa.delete(AppRegistration).where(AppRegistration.id == registration_id)
            )
        logger.info("deleted registration [%s]", registration_id)
