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
Membership and grade sync

Creates local accounts, LTI users and enrolments for every member that a
platform lists through its Names and Role Provisioning Service, so users
exist before their first launch.

Sends the grades recorded for enrolled users back to the platform through
its Assignment and Grade Service.
"""

import dataclasses
import datetime
import logging
import math
import time
from collections.abc import Callable

from .. import db, errors, schemas, services
from .identity import IdentityResolver
from .roles import classify

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class SyncReport:
    links: int = 0
    members: int = 0
    created: int = 0
    skipped: int = 0
    failed: int = 0


class MemberSync:
    def __init__(
        self,
        resolver: IdentityResolver | None = None,
        client_factory: Callable[
            [schemas.ApplicationRegistration, str], services.NamesRoleService
        ] = services.NamesRoleService,
        now: Callable[[], float] = time.time,
    ) -> None:
        self.resolver = resolver or IdentityResolver(now=now)
        self.client_factory = client_factory
        self.now = now

    async def sync_link(self, link: schemas.ResourceLink, report: SyncReport) -> None:
        resource = await db.resource_store.get_resource(link.resource_id)
        if resource is None or not resource.enabled or not resource.membersync:
            logger.info("member sync disabled for link [%s]", link.id)
            return
        deployment = await db.deployment_store.get(link.deployment_id)
        if deployment is None:
            return
        registration = await db.registration_store.get(deployment.registration_id)
        if registration is None or not link.nrps_context_memberships_url:
            return

        report.links += 1
        nrps = self.client_factory(registration, link.nrps_context_memberships_url)
        async for member in nrps.all_members():
            report.members += 1
            if not member.is_active:
                report.skipped += 1
                continue
            try:
                identity = await self.resolver.find_or_create_user_from_membership(
                    member,
                    registration.platform_issuer,
                    deployment.legacy_consumer_key,
                )
            except errors.AccountCreationDisabled:
                report.skipped += 1
                continue
            account_id = identity.account.id
            assert account_id is not None  # noqa: S101
            if identity.created:
                report.created += 1
            await db.user_store.save(link.add_user(member.user_id, account_id))
            role = (
                resource.role_instructor
                if classify(member.roles).is_privileged
                else resource.role_learner
            )
            await db.enrolment_store.enrol(account_id, resource.id, role)

    async def sync_members(self) -> SyncReport:
        """Runs one sync pass over all resource links with an NRPS URL."""
        report = SyncReport()
        for link in await db.resource_link_store.find_with_names_and_roles():
            try:
                await self.sync_link(link, report)
            except errors.LtiServiceError as exc:
                report.failed += 1
                logger.error("member sync failed for link [%s]: %r", link.id, exc)
        logger.info("member sync finished: %r", report)
        return report


async def sync_members() -> SyncReport:
    return await MemberSync().sync_members()


@dataclasses.dataclass
class GradeSyncReport:
    links: int = 0
    users: int = 0
    sent: int = 0
    skipped: int = 0
    failed: int = 0


class GradeSync:
    LINEITEM_LOCK_TTL = 300

    def __init__(
        self,
        client_factory: Callable[
            [schemas.ApplicationRegistration, str | None, str | None, list[str]],
            services.AssignmentGradeService,
        ] = services.AssignmentGradeService,
        now: Callable[[], float] = time.time,
    ) -> None:
        self.client_factory = client_factory
        self.now = now

    async def lineitem_for(
        self,
        service: services.AssignmentGradeService,
        link: schemas.ResourceLink,
        resource: schemas.PublishedResource,
    ) -> schemas.LineItem | None:
        """Returns the line item that scores for ``link`` go to.

        Returns None if another process is adding the line item.
        """
        if link.ags_lineitem_url:
            return schemas.LineItem.model_validate(
                {
                    "id": link.ags_lineitem_url,
                    "scoreMaximum": resource.grade_max,
                    "label": resource.name,
                }
            )
        if item := await service.lineitem(resource.name):
            return item

        # must ensure the line item is only created once, use the cache
        # table as a multiprocess lock
        item = schemas.LineItem.model_validate(
            {
                "scoreMaximum": resource.grade_max,
                "label": resource.name,
                "resourceId": resource.id,
            }
        )
        lock_key = f"lti-lineitem-{link.context_id or link.id}-{resource.id}"
        if (
            await db.cache_store.add(
                lock_key,
                item.model_dump_json(by_alias=True),
                ttl=self.LINEITEM_LOCK_TTL,
            )
            is None
        ):
            logger.warning("another process is adding %r", item)
            return None
        return await service.add_lineitem(item)

    async def sync_link(
        self, link: schemas.ResourceLink, report: GradeSyncReport
    ) -> None:
        resource = await db.resource_store.get_resource(link.resource_id)
        if resource is None or not resource.enabled or not resource.grading_enabled:
            logger.info("grade sync disabled for link [%s]", link.id)
            return
        if resource.grade_max <= 0:
            logger.warning("resource [%s] has no maximum grade", resource.id)
            return
        deployment = await db.deployment_store.get(link.deployment_id)
        if deployment is None:
            return
        registration = await db.registration_store.get(deployment.registration_id)
        if registration is None or link.id is None:
            return

        report.links += 1
        ags = self.client_factory(
            registration,
            link.ags_lineitems_url,
            link.ags_lineitem_url,
            list(link.ags_scopes),
        )
        item = None
        for user in await db.user_store.find_by_resource_link(link.id):
            report.users += 1
            assert user.local_id is not None  # noqa: S101
            enrolment = await db.enrolment_store.enrolment(user.local_id, resource.id)
            if enrolment is None or enrolment.grade is None:
                report.skipped += 1
                continue
            grade = enrolment.grade
            if user.lastgrade is not None and math.isclose(user.lastgrade, grade):
                report.skipped += 1
                continue
            if item is None:
                item = await self.lineitem_for(ags, link, resource)
                if item is None:
                    # the next pass picks these users up
                    return

            graded_at = enrolment.graded_at or int(self.now())
            score = schemas.Score.model_validate(
                {
                    "timestamp": datetime.datetime.fromtimestamp(
                        graded_at, tz=datetime.UTC
                    ),
                    "scoreGiven": grade,
                    "scoreMaximum": resource.grade_max,
                    "userId": user.source_id,
                }
            )
            try:
                await ags.add_score(item, score)
            except errors.LtiServiceError as exc:
                report.failed += 1
                logger.error(
                    "score for [%s] on link [%s] not sent: %r",
                    user.source_id,
                    link.id,
                    exc,
                )
                continue
            report.sent += 1
            await db.user_store.save(user.model_copy(update={"lastgrade": grade}))

    async def sync_grades(self) -> GradeSyncReport:
        """Runs one sync pass over all resource links with a grade service."""
        report = GradeSyncReport()
        for link in await db.resource_link_store.find_with_grade_service():
            try:
                await self.sync_link(link, report)
            except errors.LtiServiceError as exc:
                report.failed += 1
                logger.error("grade sync failed for link [%s]: %r", link.id, exc)
        logger.info("grade sync finished: %r", report)
        return report


async def sync_grades() -> GradeSyncReport:
    return await GradeSync().sync_grades()
