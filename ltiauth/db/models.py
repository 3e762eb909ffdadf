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
from typing import Any

import sqlalchemy as sa
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    validates,
)

from .core import new_uuid

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    type_annotation_map = {
        dict[str, Any]: sa.JSON,
        list[str]: sa.JSON,
    }


class ToolKey(Base):
    """JSON Web Keys.

    The private keys of this tool. The public half is published from the
    ``/.well-known/jwks.json`` endpoint and is used by platforms to verify
    the client assertions we send when calling LTI Advantage Services.
    """

    __tablename__ = "tool_jwks"

    kid: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    data: Mapped[str]
    valid_from: Mapped[datetime.datetime] = mapped_column(
        sa.DateTime, default=sa.func.now()
    )
    valid_to: Mapped[datetime.datetime | None]

    def __repr__(self) -> str:
        return (
            "ToolKey("
            f"kid={self.kid!r}"
            f", valid_from={self.valid_from}"
            f", valid_to={self.valid_to}"
            ")"
        )


class Cache(Base):
    """Cache table.

    Holds short-lived entries such as OIDC nonces and in-flight launch data.
    Keeping this in the database lets any worker pick up the next request
    in a launch without a separate cache service.
    """

    __tablename__ = "cache_objects"

    key: Mapped[str] = mapped_column(sa.String(255), primary_key=True)
    ttl: Mapped[int] = mapped_column(sa.Integer, default=3600)
    ttl_type: Mapped[str] = mapped_column(sa.String(10), default="fixed")
    expire_at: Mapped[datetime.datetime]
    value: Mapped[str] = mapped_column(sa.Text)

    def __repr__(self) -> str:
        return (
            f"Cache(key={self.key!r}, "
            f"ttl={self.ttl}, "
            f"ttl_type={self.ttl_type}, "
            f"expire_at={self.expire_at}"
            ")"
        )


class AppRegistration(Base):
    """A platform registration of this tool.

    Note that some LMS vendors such as Canvas use the same ``issuer`` URL
    for all installations, so only ``(platform_issuer, client_id)`` is unique.
    """

    __tablename__ = "lti_app_registrations"
    __table_args__ = (sa.UniqueConstraint("platform_issuer", "client_id"),)

    id: Mapped[str] = mapped_column(sa.String(32), primary_key=True, default=new_uuid)
    name: Mapped[str] = mapped_column(sa.String(255))
    platform_issuer: Mapped[str] = mapped_column(sa.String(255))
    client_id: Mapped[str] = mapped_column(sa.String(255))
    auth_request_url: Mapped[str]
    jwks_url: Mapped[str]
    access_token_url: Mapped[str | None]
    created_at: Mapped[datetime.datetime] = mapped_column(
        sa.DateTime, default=sa.func.now()
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        sa.DateTime, default=sa.func.now(), onupdate=sa.func.now()
    )

    def __repr__(self) -> str:
        return (
            f"AppRegistration(id={self.id!r}, "
            f"platform_issuer={self.platform_issuer!r}, "
            f"client_id={self.client_id!r})"
        )


class Deployment(Base):
    __tablename__ = "lti_deployments"
    __table_args__ = (sa.UniqueConstraint("registration_id", "deployment_id"),)

    id: Mapped[str] = mapped_column(sa.String(32), primary_key=True, default=new_uuid)
    name: Mapped[str] = mapped_column(sa.String(255))
    deployment_id: Mapped[str] = mapped_column(sa.String(255))
    registration_id: Mapped[str] = mapped_column(
        sa.ForeignKey("lti_app_registrations.id")
    )
    legacy_consumer_key: Mapped[str | None] = mapped_column(sa.String(255))
    created_at: Mapped[datetime.datetime] = mapped_column(
        sa.DateTime, default=sa.func.now()
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        sa.DateTime, default=sa.func.now(), onupdate=sa.func.now()
    )

    def __repr__(self) -> str:
        return f"Deployment(id={self.id!r}, deployment_id={self.deployment_id!r})"


class Context(Base):
    __tablename__ = "lti_contexts"
    __table_args__ = (sa.UniqueConstraint("deployment_id", "context_id"),)

    id: Mapped[str] = mapped_column(sa.String(32), primary_key=True, default=new_uuid)
    deployment_id: Mapped[str] = mapped_column(sa.ForeignKey("lti_deployments.id"))
    context_id: Mapped[str] = mapped_column(sa.String(255))
    types: Mapped[list[str]] = mapped_column(default=list)
    created_at: Mapped[datetime.datetime] = mapped_column(
        sa.DateTime, default=sa.func.now()
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        sa.DateTime, default=sa.func.now(), onupdate=sa.func.now()
    )

    def __repr__(self) -> str:
        return f"Context(id={self.id!r}, context_id={self.context_id!r})"


class ResourceLink(Base):
    __tablename__ = "lti_resource_links"
    __table_args__ = (sa.UniqueConstraint("deployment_id", "resource_link_id"),)

    id: Mapped[str] = mapped_column(sa.String(32), primary_key=True, default=new_uuid)
    resource_link_id: Mapped[str] = mapped_column(sa.String(255))
    deployment_id: Mapped[str] = mapped_column(sa.ForeignKey("lti_deployments.id"))
    resource_id: Mapped[str] = mapped_column(sa.ForeignKey("published_resources.id"))
    context_id: Mapped[str | None] = mapped_column(sa.ForeignKey("lti_contexts.id"))
    nrps_context_memberships_url: Mapped[str | None]
    nrps_service_versions: Mapped[list[str]] = mapped_column(default=list)
    ags_lineitems_url: Mapped[str | None]
    ags_lineitem_url: Mapped[str | None]
    ags_scopes: Mapped[list[str]] = mapped_column(default=list)
    created_at: Mapped[datetime.datetime] = mapped_column(
        sa.DateTime, default=sa.func.now()
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        sa.DateTime, default=sa.func.now(), onupdate=sa.func.now()
    )

    def __repr__(self) -> str:
        return (
            f"ResourceLink(id={self.id!r}, "
            f"resource_link_id={self.resource_link_id!r})"
        )


class LtiUser(Base):
    """A platform user of a published resource within a deployment."""

    __tablename__ = "lti_users"
    __table_args__ = (
        sa.UniqueConstraint("resource_id", "deployment_id", "source_id"),
    )

    id: Mapped[str] = mapped_column(sa.String(32), primary_key=True, default=new_uuid)
    resource_id: Mapped[str] = mapped_column(sa.ForeignKey("published_resources.id"))
    deployment_id: Mapped[str] = mapped_column(sa.ForeignKey("lti_deployments.id"))
    source_id: Mapped[str] = mapped_column(sa.String(255))
    local_id: Mapped[str] = mapped_column(sa.ForeignKey("accounts.id"))
    lastgrade: Mapped[float | None]
    lastaccess: Mapped[int | None]
    created_at: Mapped[datetime.datetime] = mapped_column(
        sa.DateTime, default=sa.func.now()
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        sa.DateTime, default=sa.func.now(), onupdate=sa.func.now()
    )

    def __repr__(self) -> str:
        return (
            f"LtiUser(id={self.id!r}, "
            f"source_id={self.source_id!r}, "
            f"local_id={self.local_id!r})"
        )


class UserResourceLink(Base):
    __tablename__ = "lti_user_resource_links"
    __table_args__ = (sa.UniqueConstraint("lti_user_id", "resource_link_id"),)

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    lti_user_id: Mapped[str] = mapped_column(sa.ForeignKey("lti_users.id"))
    resource_link_id: Mapped[str] = mapped_column(
        sa.ForeignKey("lti_resource_links.id")
    )


class LinkedLogin(Base):
    """Binding of a platform identity to a local account.

    Both the issuer and subject are stored as SHA-256 hex digests. A row with
    a ``token`` is awaiting email confirmation.
    """

    __tablename__ = "lti_linked_logins"
    __table_args__ = (sa.UniqueConstraint("issuer_hash", "subject_hash"),)

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(sa.ForeignKey("accounts.id"))
    issuer_hash: Mapped[str] = mapped_column(sa.String(64))
    subject_hash: Mapped[str] = mapped_column(sa.String(64))
    token: Mapped[str | None] = mapped_column(sa.String(128))
    token_expiry: Mapped[int | None]
    created_at: Mapped[int]

    def __repr__(self) -> str:
        return (
            f"LinkedLogin(account_id={self.account_id!r}, "
            f"confirmed={self.token is None})"
        )


class LegacyConsumerSecret(Base):
    """A shared secret of an LTI 1.1 consumer key.

    A consumer may have several secrets when it was rotated.
    """

    __tablename__ = "lti_legacy_consumer_secrets"
    __table_args__ = (sa.UniqueConstraint("consumer_key", "secret"),)

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    consumer_key: Mapped[str] = mapped_column(sa.String(255), index=True)
    secret: Mapped[str] = mapped_column(sa.String(255))

    def __repr__(self) -> str:
        return f"LegacyConsumerSecret(consumer_key={self.consumer_key!r})"


class Account(Base):
    """Local user account."""

    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(sa.String(32), primary_key=True, default=new_uuid)
    username: Mapped[str] = mapped_column(sa.String(128), unique=True)
    auth: Mapped[str] = mapped_column(sa.String(20), default="manual")
    password_hash: Mapped[str | None] = mapped_column(sa.String(128))
    firstname: Mapped[str] = mapped_column(sa.String(100))
    lastname: Mapped[str] = mapped_column(sa.String(100))
    email: Mapped[str] = mapped_column(sa.String(255))
    confirmed: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    lang: Mapped[str] = mapped_column(sa.String(30), default="en")
    timezone: Mapped[str] = mapped_column(sa.String(100), default="99")
    city: Mapped[str] = mapped_column(sa.String(120), default="")
    country: Mapped[str] = mapped_column(sa.String(2), default="")
    institution: Mapped[str] = mapped_column(sa.String(255), default="")
    maildisplay: Mapped[int] = mapped_column(sa.Integer, default=2)
    picture: Mapped[str | None]
    created_at: Mapped[datetime.datetime] = mapped_column(
        sa.DateTime, default=sa.func.now()
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        sa.DateTime, default=sa.func.now(), onupdate=sa.func.now()
    )

    # noinspection PyUnusedLocal
    @validates("username")
    def normalize_username(  # type: ignore[no-untyped-def]
        self,
        key,  # noqa: ARG002
        value: str,
    ) -> str:
        """Ensure we always store the ``username`` in lowercase."""
        return value.lower()

    def __repr__(self) -> str:
        return (
            f"Account(id={self.id!r}, username={self.username!r}, auth={self.auth!r})"
        )


class PublishedResource(Base):
    """A course or activity published for launch over LTI."""

    __tablename__ = "published_resources"

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=new_uuid)
    name: Mapped[str] = mapped_column(sa.String(255))
    course_id: Mapped[str] = mapped_column(sa.String(64))
    module_id: Mapped[str | None] = mapped_column(sa.String(64))
    context_level: Mapped[str] = mapped_column(sa.String(10), default="course")
    enabled: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    url: Mapped[str | None]
    grading_enabled: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    grade_max: Mapped[float] = mapped_column(sa.Float, default=100.0)
    display_settings: Mapped[dict[str, Any]] = mapped_column(default=dict)
    membersync: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    role_instructor: Mapped[str] = mapped_column(sa.String(30), default="teacher")
    role_learner: Mapped[str] = mapped_column(sa.String(30), default="student")
    lang: Mapped[str] = mapped_column(sa.String(30), default="en")
    timezone: Mapped[str] = mapped_column(sa.String(100), default="99")
    city: Mapped[str] = mapped_column(sa.String(120), default="")
    country: Mapped[str] = mapped_column(sa.String(2), default="")
    institution: Mapped[str] = mapped_column(sa.String(255), default="")
    maildisplay: Mapped[int] = mapped_column(sa.Integer, default=2)

    def __repr__(self) -> str:
        return f"PublishedResource(id={self.id!r}, course_id={self.course_id!r})"


class Enrolment(Base):
    __tablename__ = "enrolments"
    __table_args__ = (sa.UniqueConstraint("account_id", "resource_id"),)

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(sa.ForeignKey("accounts.id"))
    resource_id: Mapped[str] = mapped_column(sa.ForeignKey("published_resources.id"))
    course_id: Mapped[str] = mapped_column(sa.String(64))
    role: Mapped[str] = mapped_column(sa.String(30))
    grade: Mapped[float | None]
    graded_at: Mapped[int | None]
    created_at: Mapped[datetime.datetime] = mapped_column(
        sa.DateTime, default=sa.func.now()
    )

    def __repr__(self) -> str:
        return (
            f"Enrolment(account_id={self.account_id!r}, "
            f"course_id={self.course_id!r}, role={self.role!r})"
        )
