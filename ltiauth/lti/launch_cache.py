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

"""
Launch Cache

Holds validated launch messages between the requests of one browser
session, for example while a user picks or confirms an account.
"""

import logging
import secrets

from .. import db, errors, settings
from .claims import LaunchMessage

logger = logging.getLogger(__name__)


class LaunchCache:
    """Session scoped store of launch messages.

    Entries are namespaced by the session id, so a launch id leaked to
    another browser does not resolve there.
    """

    def __init__(self, session_id: str, cache: db.stores.CacheStore | None = None):
        if not session_id:
            raise ValueError("SESSION_ID_REQUIRED")
        self.session_id = session_id
        self.cache = cache or db.cache_store

    def _key(self, launch_id: str) -> str:
        return f"lti-launch-{self.session_id}-{launch_id}"

    async def store(self, message: LaunchMessage) -> str:
        """Caches the message and returns its new, unguessable, launch id."""
        launch_id = secrets.token_urlsafe(24)
        await self.cache.put(
            key=self._key(launch_id),
            value=message.dumps(),
            ttl=settings.SESSION_MAX_AGE,
        )
        logger.info("cached launch [%s] for %s", launch_id, message)
        return launch_id

    async def retrieve(self, launch_id: str) -> LaunchMessage:
        """Returns the cached message, which stays cached until purged."""
        if (data := await self.cache.get(self._key(launch_id))) is None:
            logger.warning("launch [%s] not found in session cache", launch_id)
            raise errors.LaunchNotFound(launch_id)
        return LaunchMessage.loads(data)

    async def purge(self, launch_id: str) -> None:
        await self.cache.delete(self._key(launch_id))
