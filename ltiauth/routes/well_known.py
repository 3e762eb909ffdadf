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
OAuth/OIDC Well Known routes
"""

from typing import Any

from async_lru import alru_cache
from fastapi import APIRouter

from .. import keys

router = APIRouter()


@router.get("/jwks.json")
async def jwks() -> dict[str, Any]:
    """JSON Web Key Set endpoint.

    Platforms use these keys to verify the client assertions this tool
    sends when requesting LTI Advantage Service tokens.
    """
    return await _load_jwks()


@alru_cache(ttl=3600)
async def _load_jwks() -> dict[str, Any]:
    ks = await keys.public_key_set()
    return ks.as_dict()  # type: ignore[return-value]
