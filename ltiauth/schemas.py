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
Launch and identity schemas

Immutable value objects for the records kept by the ``db`` stores. An
object built here without an ``id`` has not been persisted yet. The
persisted form is only ever produced by a store's ``save`` or lookup
methods, which fill in the server-assigned ``id``.
"""

import datetime
import logging
from typing import Annotated, Any, Literal, Self, TypeAlias

from pydantic import (
    BaseModel,
    Field,
    HttpUrl,
    SecretStr,
    field_validator,
)

logger = logging.getLogger(__name__)

AUTH_LTI = "lti"
AUTH_MANUAL = "manual"

NonEmptyStr = Annotated[str, Field(min_length=1)]

ActivityProgress: TypeAlias = Literal[
    "Initialized", "Started", "InProgress", "Submitted", "Completed"
]
GradingProgress: TypeAlias = Literal[
    "FullyGraded", "Pending", "PendingManual", "Failed", "NotReady"
]


def make_secret(val: str) -> SecretStr:
    return SecretStr(val)


class DBBaseModel(BaseModel):
    model_config = {"from_attributes": True, "frozen": True}


class ApplicationRegistration(DBBaseModel):
    """A registration of this tool with an LTI 1.3 platform.

    The ``platform_issuer`` and ``client_id`` are fixed once created. Only the
    endpoint URLs can be changed, see ``with_endpoints``.
    """

    id: str | None = None
    name: str
    platform_issuer: NonEmptyStr
    client_id: NonEmptyStr
    auth_request_url: HttpUrl
    jwks_url: HttpUrl
    access_token_url: HttpUrl | None = None

    def with_endpoints(
        self,
        *,
        auth_request_url: str | None = None,
        jwks_url: str | None = None,
        access_token_url: str | None = None,
    ) -> Self:
        """Returns a copy of this registration using the given endpoint URLs."""
        data = self.model_dump()
        if auth_request_url is not None:
            data["auth_request_url"] = auth_request_url
        if jwks_url is not None:
            data["jwks_url"] = jwks_url
        if access_token_url is not None:
            data["access_token_url"] = access_token_url
        return self.model_validate(data)

    def add_tool_deployment(self, name: str, deployment_id: str) -> "Deployment":
        """Returns a new, unsaved, ``Deployment`` of this registration."""
        if self.id is None:
            raise ValueError("REGISTRATION_NOT_PERSISTED")
        return Deployment(
            name=name,
            deployment_id=deployment_id,
            registration_id=self.id,
        )


class Deployment(DBBaseModel):
    id: str | None = None
    name: str
    deployment_id: NonEmptyStr
    registration_id: NonEmptyStr
    legacy_consumer_key: str | None = None

    def add_context(self, context_id: str, types: list[str] | None = None) -> "Context":
        """Returns a new, unsaved, ``Context`` of this deployment."""
        if self.id is None:
            raise ValueError("DEPLOYMENT_NOT_PERSISTED")
        return Context(
            deployment_id=self.id,
            context_id=context_id,
            types=tuple(types or ()),
        )

    def add_resource_link(
        self,
        resource_link_id: str,
        resource_id: str,
        context_id: str | None = None,
    ) -> "ResourceLink":
        """Returns a new, unsaved, ``ResourceLink`` of this deployment.

        The ``context_id`` is the local id of a saved ``Context``.
        """
        if self.id is None:
            raise ValueError("DEPLOYMENT_NOT_PERSISTED")
        return ResourceLink(
            resource_link_id=resource_link_id,
            deployment_id=self.id,
            resource_id=resource_id,
            context_id=context_id,
        )

    def with_legacy_consumer_key(self, consumer_key: str) -> Self:
        return self.model_copy(update={"legacy_consumer_key": consumer_key})


class Context(DBBaseModel):
    id: str | None = None
    deployment_id: str
    context_id: NonEmptyStr
    types: tuple[str, ...] = ()


class ResourceLink(DBBaseModel):
    id: str | None = None
    resource_link_id: NonEmptyStr
    deployment_id: str
    resource_id: str
    context_id: str | None = None
    nrps_context_memberships_url: str | None = None
    nrps_service_versions: tuple[str, ...] = ()
    ags_lineitems_url: str | None = None
    ags_lineitem_url: str | None = None
    ags_scopes: tuple[str, ...] = ()

    def with_names_and_roles_service(
        self, context_memberships_url: str, service_versions: list[str]
    ) -> Self:
        return self.model_copy(
            update={
                "nrps_context_memberships_url": context_memberships_url,
                "nrps_service_versions": tuple(service_versions),
            }
        )

    def with_grade_service(
        self,
        lineitems_url: str | None,
        lineitem_url: str | None,
        scopes: list[str],
    ) -> Self:
        return self.model_copy(
            update={
                "ags_lineitems_url": lineitems_url,
                "ags_lineitem_url": lineitem_url,
                "ags_scopes": tuple(scopes),
            }
        )

    @property
    def has_grade_service(self) -> bool:
        return bool(self.ags_lineitem_url or self.ags_lineitems_url)

    def add_user(
        self,
        source_id: str,
        local_id: str | None = None,
        lastaccess: int | None = None,
    ) -> "LtiUser":
        """Returns a new, unsaved, ``LtiUser`` who reached the tool via this link."""
        if self.id is None:
            raise ValueError("RESOURCE_LINK_NOT_PERSISTED")
        return LtiUser(
            resource_id=self.resource_id,
            deployment_id=self.deployment_id,
            source_id=source_id,
            local_id=local_id,
            lastaccess=lastaccess,
            resource_link_id=self.id,
        )


class LtiUser(DBBaseModel):
    """A platform user of a published resource.

    The profile fields are read from the local account referenced by
    ``local_id`` and are empty until the user has been saved.
    """

    id: str | None = None
    resource_id: str
    deployment_id: str
    source_id: NonEmptyStr
    local_id: str | None = None
    firstname: str = ""
    lastname: str = ""
    username: str = ""
    email: str = ""
    lang: str = "en"
    city: str = ""
    country: str = ""
    institution: str = ""
    timezone: str = "99"
    maildisplay: int = 2
    lastgrade: float | None = None
    lastaccess: int | None = None
    resource_link_id: str | None = None


class Account(DBBaseModel):
    """Local user account.

    Accounts created from LTI launches have ``auth`` set to ``lti`` and are
    the only ones whose profile is refreshed from platform claims.
    """

    id: str | None = None
    username: NonEmptyStr
    auth: str = AUTH_MANUAL
    firstname: NonEmptyStr
    lastname: NonEmptyStr
    email: str
    confirmed: bool = False
    lang: str = "en"
    timezone: NonEmptyStr = "99"
    city: str = ""
    country: str = ""
    institution: str = ""
    maildisplay: Annotated[int, Field(ge=0, le=2)] = 2
    picture: str | None = None

    @property
    def is_lti_managed(self) -> bool:
        return self.auth == AUTH_LTI

    @property
    def fullname(self) -> str:
        return f"{self.firstname} {self.lastname}"


class IdentityBinding(DBBaseModel):
    """An {issuer, subject} to local account binding.

    A binding holding a ``token`` is waiting on email confirmation and does
    not count as a binding until the token is cleared.
    """

    account_id: str
    issuer_hash: str
    subject_hash: str
    token: str | None = None
    token_expiry: int | None = None
    created_at: int

    @property
    def is_confirmed(self) -> bool:
        return self.token is None

    def is_expired(self, now: float) -> bool:
        return self.token_expiry is not None and self.token_expiry < now


class PublishedResource(DBBaseModel):
    """A course or activity available for launch."""

    id: str
    name: str
    course_id: str
    module_id: str | None = None
    context_level: str = "course"
    enabled: bool = True
    url: str | None = None
    grading_enabled: bool = False
    grade_max: float = 100.0
    display_settings: dict[str, Any] = {}
    membersync: bool = True
    role_instructor: str = "teacher"
    role_learner: str = "student"
    lang: str = "en"
    timezone: str = "99"
    city: str = ""
    country: str = ""
    institution: str = ""
    maildisplay: int = 2

    @property
    def is_module_level(self) -> bool:
        return self.context_level == "module"


class Enrolment(DBBaseModel):
    account_id: str
    resource_id: str
    course_id: str
    role: str
    grade: float | None = None
    graded_at: int | None = None


class ToolJsonWebKey(BaseModel):
    """JSON Web Key.

    A standalone schema class for ``ltiauth.db.models.ToolKey``.
    """

    model_config = {"from_attributes": True}

    kid: str
    data: SecretStr
    valid_from: datetime.datetime
    valid_to: datetime.datetime | None = None

    @field_validator("valid_from", "valid_to", mode="before")
    def tz_aware_dates(cls, v: datetime.datetime | None) -> datetime.datetime | None:
        if v is None:
            return None
        if v.tzinfo is not None and v.tzinfo.utcoffset(None) is not None:
            return v
        return v.replace(tzinfo=datetime.UTC)

    @property
    def is_valid(self) -> bool:
        now = datetime.datetime.now(tz=datetime.UTC)
        if self.valid_from > now:
            return False
        return self.valid_to is None or self.valid_to > now


class Member(BaseModel):
    """A Names and Role Provisioning Service membership entry.

    see https://www.imsglobal.org/spec/lti-nrps/v2p0#membership-container-media-type
    """

    user_id: NonEmptyStr
    roles: list[str] = []
    status: str = "Active"
    name: str | None = None
    given_name: str | None = None
    family_name: str | None = None
    email: str | None = None
    picture: str | None = None
    lti11_legacy_user_id: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == "Active"


class LineItem(BaseModel):
    """Assignment and Grade Services Line Item.

    see https://www.imsglobal.org/spec/lti-ags/v2p0#updating-a-line-item
    """

    model_config = {"populate_by_name": True}

    id: str | None = None
    score_max: Annotated[int | float, Field(alias="scoreMaximum", gt=0)]
    label: str
    resource_id: Annotated[str | None, Field(alias="resourceId")] = None
    tag: str | None = None


class Score(BaseModel):
    """Assignment and Grade Services Score.

    see https://www.imsglobal.org/spec/lti-ags/v2p0#score-service-media-type-and-schema
    """

    model_config = {"populate_by_name": True}

    timestamp: datetime.datetime = Field(
        default_factory=lambda: datetime.datetime.now(tz=datetime.UTC)
    )
    score_given: Annotated[int | float, Field(alias="scoreGiven", ge=0)]
    score_max: Annotated[int | float, Field(alias="scoreMaximum", gt=0)]
    comment: str | None = None
    activity_progress: Annotated[
        ActivityProgress, Field(alias="activityProgress")
    ] = "Completed"
    grading_progress: Annotated[
        GradingProgress, Field(alias="gradingProgress")
    ] = "FullyGraded"
    user_id: Annotated[str, Field(alias="userId")]


class GradeReport(BaseModel):
    """A grade earned by a local account on a published resource."""

    account_id: NonEmptyStr
    resource_id: NonEmptyStr
    grade: Annotated[float, Field(ge=0)]
