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

import sqlalchemy as sa

from ... import schemas
from ..core import async_session
from ..models import ToolKey

logger = logging.getLogger(__name__)


class ToolKeyStore:
    """Tool JSON Web Key Repository."""

    # noinspection PyMethodMayBeStatic
    async def json_web_keys(self) -> list[schemas.ToolJsonWebKey]:
        # stored without a timezone
        now = datetime.datetime.now(tz=datetime.UTC).replace(tzinfo=None)
        stmt = sa.select(ToolKey).where(
            ToolKey.valid_from <= now,
            sa.or_(
                ToolKey.valid_to.is_(None),
                ToolKey.valid_to > now,
            ),
        )
        async with async_session() as session:
            result = await session.execute(stmt)
            return [schemas.ToolJsonWebKey.model_validate(r) for r in result.scalars()]

    # noinspection PyMethodMayBeStatic
    async def add(self, key: schemas.ToolJsonWebKey) -> None:
        row = ToolKey(
            kid=key.kid,
            data=key.data.get_secret_value(),
            valid_from=key.valid_from.replace(tzinfo=None),
            valid_to=key.valid_to.replace(tzinfo=None) if key.valid_to else None,
        )
        async with async_session.begin() as session:
            session.add(row)
        logger.info("added tool key %r", row)
