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
LTI Launch Messages

Read-only access to the claims of a validated LTI 1.3 id_token.

see https://www.imsglobal.org/spec/lti/v1p3#required-message-claims
"""

import dataclasses
import json
import logging
from collections.abc import Mapping
from typing import Any

logger = logging.getLogger(__name__)

MESSAGE_TYPE_KEY = "https://purl.imsglobal.org/spec/lti/claim/message_type"
MESSAGE_VERSION_KEY = "https://purl.imsglobal.org/spec/lti/claim/version"
MESSAGE_DEPLOYMENT_ID_KEY = "https://purl.imsglobal.org/spec/lti/claim/deployment_id"
MESSAGE_RESOURCE_LINK_KEY = "https://purl.imsglobal.org/spec/lti/claim/resource_link"
MESSAGE_CONTEXT_KEY = "https://purl.imsglobal.org/spec/lti/claim/context"
MESSAGE_ROLES_KEY = "https://purl.imsglobal.org/spec/lti/claim/roles"
MESSAGE_CUSTOM_KEY = "https://purl.imsglobal.org/spec/lti/claim/custom"
MESSAGE_MIGRATION_KEY = "https://purl.imsglobal.org/spec/lti/claim/lti1p1"
MESSAGE_NRPS_KEY = "https://purl.imsglobal.org/spec/lti-nrps/claim/namesroleservice"
MESSAGE_AGS_KEY = "https://purl.imsglobal.org/spec/lti-ags/claim/endpoint"

RESOURCE_LINK_REQUEST = "LtiResourceLinkRequest"
DEEP_LINKING_REQUEST = "LtiDeepLinkingRequest"

# custom parameter holding the local id of the published resource
CUSTOM_RESOURCE_ID = "id"
CUSTOM_FORCE_EMBED = "force_embed"


@dataclasses.dataclass(frozen=True)
class MigrationClaim:
    """The ``lti1p1`` claim of a launch from a platform migrating from LTI 1.1.

    see https://www.imsglobal.org/spec/lti/v1p3/migr#lti-1-1-migration-claim
    """

    consumer_key: str | None
    signature: str | None
    user_id: str | None = None
    context_id: str | None = None
    tool_consumer_instance_guid: str | None = None
    resource_link_id: str | None = None

    @classmethod
    def from_claim(cls, claim: Mapping[str, Any]) -> "MigrationClaim":
        return cls(
            consumer_key=claim.get("oauth_consumer_key") or None,
            signature=claim.get("oauth_consumer_key_sign") or None,
            user_id=claim.get("user_id") or None,
            context_id=claim.get("context_id") or None,
            tool_consumer_instance_guid=claim.get("tool_consumer_instance_guid"),
            resource_link_id=claim.get("resource_link_id") or None,
        )


class LaunchMessage:
    """LTI Launch Message.

    Wraps the claims of a Resource Link or Deep Linking request.
    """

    def __init__(self, claims: str | Mapping[str, Any]) -> None:
        data = json.loads(claims) if isinstance(claims, str) else dict(claims)
        if data.get(MESSAGE_VERSION_KEY) != "1.3.0":
            raise ValueError("INVALID_MESSAGE_VERSION", data.get(MESSAGE_VERSION_KEY))
        self.claims = data

    @property
    def issuer(self) -> str:
        return self.claims["iss"]  # type: ignore[no-any-return]

    @property
    def subject(self) -> str:
        return self.claims["sub"]  # type: ignore[no-any-return]

    @property
    def client_id(self) -> str:
        """Returns the client id this message was issued to.

        When ``aud`` lists more than one audience the authorized party
        claim names the client.
        """
        aud = self.claims["aud"]
        if isinstance(aud, str):
            return aud
        if len(aud) == 1:
            return aud[0]  # type: ignore[no-any-return]
        return self.claims["azp"]  # type: ignore[no-any-return]

    @property
    def nonce(self) -> str | None:
        return self.claims.get("nonce")

    @property
    def expires_at(self) -> int:
        return int(self.claims["exp"])

    @property
    def deployment_id(self) -> str | None:
        return self.claims.get(MESSAGE_DEPLOYMENT_ID_KEY)

    @property
    def message_type(self) -> str:
        value = self.claims.get(MESSAGE_TYPE_KEY, RESOURCE_LINK_REQUEST)
        return str(value)

    @property
    def is_deep_link_launch(self) -> bool:
        """Returns True if this is a DeepLinking request."""
        return self.message_type == DEEP_LINKING_REQUEST

    @property
    def roles(self) -> list[str]:
        return list(self.claims.get(MESSAGE_ROLES_KEY) or [])

    @property
    def context(self) -> dict[str, Any] | None:
        return self.claims.get(MESSAGE_CONTEXT_KEY)

    @property
    def resource_link(self) -> dict[str, Any] | None:
        return self.claims.get(MESSAGE_RESOURCE_LINK_KEY)

    @property
    def custom(self) -> dict[str, Any]:
        return self.claims.get(MESSAGE_CUSTOM_KEY) or {}

    @property
    def resource_id(self) -> str | None:
        """Returns the local published resource id sent as a custom parameter."""
        value = self.custom.get(CUSTOM_RESOURCE_ID)
        return str(value) if value not in (None, "") else None

    @property
    def force_embed(self) -> bool:
        value = self.custom.get(CUSTOM_FORCE_EMBED)
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes")
        return bool(value)

    @property
    def names_role_service(self) -> dict[str, Any] | None:
        return self.claims.get(MESSAGE_NRPS_KEY)

    @property
    def assignment_grade_service(self) -> dict[str, Any] | None:
        return self.claims.get(MESSAGE_AGS_KEY)

    @property
    def migration_claim(self) -> MigrationClaim | None:
        if claim := self.claims.get(MESSAGE_MIGRATION_KEY):
            return MigrationClaim.from_claim(claim)
        return None

    @property
    def given_name(self) -> str | None:
        return self.claims.get("given_name") or None

    @property
    def family_name(self) -> str | None:
        return self.claims.get("family_name") or None

    @property
    def email(self) -> str | None:
        return self.claims.get("email") or None

    @property
    def picture(self) -> str | None:
        return self.claims.get("picture") or None

    @property
    def locale(self) -> str | None:
        return self.claims.get("locale") or None

    def dumps(self) -> str:
        """Serializes the message to a string suitable for storing."""
        return json.dumps(self.claims)

    @classmethod
    def loads(cls, data: str) -> "LaunchMessage":
        return cls(data)

    def __str__(self) -> str:
        return f"LaunchMessage({self.issuer}, {self.message_type})"
