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
LTI Advantage Services
"""

import contextlib
import dataclasses
import logging
import re
import time
from collections.abc import AsyncIterator, Mapping, Sequence
from typing import Any, cast

import httpx
import joserfc.jwt
import shortuuid

from . import aio, keys, schemas
from .errors import LtiServiceError

logger = logging.getLogger(__name__)

NEXT_PAGE_REGEX = re.compile(
    r"""<([^>]*)>; ?rel=["']next["']""",
    re.IGNORECASE | re.MULTILINE,
)

NRPS_MEDIA_TYPE = "application/vnd.ims.lti-nrps.v2.membershipcontainer+json"


@dataclasses.dataclass(frozen=True)
class TokenCacheItem:
    token: str
    expires_at: float


@dataclasses.dataclass(frozen=True)
class MembersResult:
    context: dict[str, Any]
    members: list[schemas.Member]
    next_page: str | None = None


@dataclasses.dataclass(frozen=True)
class LineItemsResult:
    items: list[schemas.LineItem]
    next_page: str | None = None


async def create_platform_token(registration: schemas.ApplicationRegistration) -> str:
    """Returns a JWT used to call LTI Advantage Services.

    LTI Advantage Services use the ``client_credentials`` flow with the
    ``urn:ietf:params:oauth:client-assertion-type:jwt-bearer`` assertion
    type. This function generates the JWT bearer to use for requesting an
    access token for these services.
    """
    now = time.time()
    payload = {
        "iss": registration.client_id,
        "sub": registration.client_id,
        "aud": str(registration.access_token_url),
        "iat": int(now) - 5,
        "exp": int(now) + 60,
        "jti": str(shortuuid.uuid()),
    }
    private_key = await keys.private_key()
    header = {"typ": "JWT", "alg": "RS256", "kid": private_key.thumbprint()}
    return joserfc.jwt.encode(header=header, claims=payload, key=private_key)


def next_page_link(headers: Mapping[str, Any]) -> str | None:
    if (val := headers.get("Link")) and (m := NEXT_PAGE_REGEX.search(val)):
        return m[1]
    return None


@contextlib.asynccontextmanager
async def lti_http_client() -> AsyncIterator[httpx.AsyncClient]:
    try:
        yield aio.http_client
    except httpx.HTTPStatusError as exc:
        try:
            message = exc.response.json()
        except ValueError:
            message = exc.response.text
        raise LtiServiceError(message, exc.response.status_code) from None
    except httpx.HTTPError as exc:
        raise LtiServiceError(str(exc)) from None


class LtiServicesClient:
    """Client for making calls to LTI Advantage Services."""

    def __init__(self, registration: schemas.ApplicationRegistration) -> None:
        self.registration = registration
        self._token_cache: dict[str, TokenCacheItem] = {}

    async def _access_token(self, scopes: Sequence[str]) -> str:
        """Returns an OAuth access_token."""
        cache_key = " ".join(sorted(scopes))
        cache_item = self._token_cache.get(cache_key)
        if cache_item and time.time() < (cache_item.expires_at - 10.0):
            return cache_item.token

        if self.registration.access_token_url is None:
            raise LtiServiceError(f"no access token URL for {self.registration.id}")

        auth_url = str(self.registration.access_token_url)
        jwt = await create_platform_token(self.registration)
        auth_data = {
            "grant_type": "client_credentials",
            "client_assertion_type": (
                "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"
            ),
            "client_assertion": jwt,
            "scope": cache_key,
        }
        headers = {"Accept": "application/json"}
        logger.info("Retrieving access token from: %s", auth_url)
        async with lti_http_client() as client:
            r = await client.post(auth_url, headers=headers, data=auth_data)
            r.raise_for_status()

        grant_response = r.json()
        access_token = grant_response["access_token"]
        expires_in = grant_response.get("expires_in", 3600)

        self._token_cache[cache_key] = TokenCacheItem(
            token=access_token,
            expires_at=time.time() + expires_in,
        )
        return cast(str, access_token)

    async def authorize_header(self, scopes: Sequence[str]) -> dict[str, str]:
        token = await self._access_token(scopes)
        return {"Authorization": "Bearer " + token}


class NamesRoleService(LtiServicesClient):
    """LTI Advantage Names and Role Provisioning Service client.

    see https://www.imsglobal.org/spec/lti-nrps/v2p0
    """

    SCOPES = [
        "https://purl.imsglobal.org/spec/lti-nrps/scope/contextmembership.readonly"
    ]

    def __init__(
        self,
        registration: schemas.ApplicationRegistration,
        context_memberships_url: str,
    ) -> None:
        super().__init__(registration)
        self.service_url = context_memberships_url

    async def members(self, next_page_url: str | None = None) -> MembersResult:
        headers = await self.authorize_header(self.SCOPES)
        headers["Accept"] = NRPS_MEDIA_TYPE
        url = next_page_url if next_page_url is not None else self.service_url
        async with lti_http_client() as client:
            r = await client.get(url=url, headers=headers)
            r.raise_for_status()
        data = r.json()
        members = []
        for m in data.get("members", []):
            if not m.get("user_id"):
                logger.warning("skipping member without user_id from %s", url)
                continue
            members.append(schemas.Member.model_validate(m))
        return MembersResult(
            context=data.get("context", {}),
            members=members,
            next_page=next_page_link(r.headers),
        )

    async def all_members(self) -> AsyncIterator[schemas.Member]:
        next_page = None
        while True:
            result = await self.members(next_page_url=next_page)
            for member in result.members:
                yield member
            if (next_page := result.next_page) is None:
                return

    def __repr__(self) -> str:
        return f"NamesRoleService({self.service_url})"


class AssignmentGradeService(LtiServicesClient):
    """LTI Advantage Assignment and Grade Service client.

    ``lineitem_url`` is the line item the platform tied to the resource
    link, if any. Otherwise line items are looked up, or added, in the
    ``lineitems_url`` container.

    see https://www.imsglobal.org/spec/lti-ags/v2p0
    """

    CONTENT_TYPE = "application/vnd.ims.lis.v2.lineitem+json"
    CONTENT_TYPE_LIST = "application/vnd.ims.lis.v2.lineitemcontainer+json"
    CONTENT_TYPE_SCORE = "application/vnd.ims.lis.v1.score+json"

    def __init__(
        self,
        registration: schemas.ApplicationRegistration,
        lineitems_url: str | None,
        lineitem_url: str | None,
        scopes: Sequence[str],
    ) -> None:
        super().__init__(registration)
        self.lineitems_url = lineitems_url
        self.lineitem_url = lineitem_url
        self.scopes = list(scopes)

    @property
    def service_url(self) -> str:
        if self.lineitems_url is None:
            msg = "no lineitems URL for the resource link"
            logger.warning(msg)
            raise LtiServiceError(msg)
        return self.lineitems_url

    async def lineitems(self, next_page_url: str | None = None) -> LineItemsResult:
        """Returns a page of the line items of the link's context."""
        url = next_page_url if next_page_url is not None else self.service_url
        headers = await self.authorize_header(self.scopes)
        headers["Accept"] = self.CONTENT_TYPE_LIST
        async with lti_http_client() as client:
            r = await client.get(url=url, headers=headers)
            r.raise_for_status()
        return LineItemsResult(
            items=[schemas.LineItem.model_validate(item) for item in r.json()],
            next_page=next_page_link(r.headers),
        )

    async def lineitem(self, label: str) -> schemas.LineItem | None:
        next_page = None
        while True:
            result = await self.lineitems(next_page_url=next_page)
            for item in result.items:
                if item.label == label:
                    return item
            if (next_page := result.next_page) is None:
                return None

    async def add_lineitem(self, item: schemas.LineItem) -> schemas.LineItem:
        """Adds a new line item to the link's context."""
        headers = await self.authorize_header(self.scopes)
        headers["Accept"] = self.CONTENT_TYPE
        headers["Content-Type"] = self.CONTENT_TYPE
        content = item.model_dump_json(
            exclude={"id"}, by_alias=True, exclude_unset=True
        )
        async with lti_http_client() as client:
            r = await client.post(
                url=self.service_url, headers=headers, content=content
            )
            r.raise_for_status()
        return schemas.LineItem.model_validate(r.json())

    async def add_score(self, item: schemas.LineItem, score: schemas.Score) -> None:
        """Adds a score to an existing line item."""
        if item.id is None:
            msg = f"LineItem does not have an ID attribute: {item!r}"
            logger.warning(msg)
            raise LtiServiceError(msg)
        score_url = f"{item.id.rstrip('/')}/scores"
        headers = await self.authorize_header(self.scopes)
        headers["Accept"] = self.CONTENT_TYPE_SCORE
        headers["Content-Type"] = self.CONTENT_TYPE_SCORE
        content = score.model_dump_json(by_alias=True, exclude_none=True)
        async with lti_http_client() as client:
            r = await client.post(url=score_url, headers=headers, content=content)
            r.raise_for_status()
        logger.debug("add_score status=%s - %s", r.status_code, r.text)

    def __repr__(self) -> str:
        return (
            f"AssignmentGradeService({self.lineitem_url or self.lineitems_url}, "
            f"scopes={self.scopes})"
        )
