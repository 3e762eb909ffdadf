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
Launch orchestration

Drives a verified launch to completion:

    LOGIN_INITIATED -> ID_TOKEN_RECEIVED -> CLAIMS_VALIDATED
        -> IDENTITY_RESOLVED -> ENTITIES_PERSISTED -> LAUNCH_COMPLETE

Privileged users without a bound account take a detour through the
account link flow (see ``account_link``) between the last two attempts at
resolving their identity. Nothing is written before the registration,
deployment and published resource of the launch have been validated.
"""

import dataclasses
import logging
import time
from collections.abc import Callable

from .. import db, errors, schemas, security, settings
from . import account_link
from .account_link import BindingState, PendingAccountLink
from .claims import LaunchMessage
from .identity import IdentityResolver, PlatformProfile, ResolvedIdentity
from .launch_cache import LaunchCache
from .roles import Role, classify

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class ValidatedLaunch:
    message: LaunchMessage
    registration: schemas.ApplicationRegistration
    deployment: schemas.Deployment
    resource: schemas.PublishedResource

    @property
    def role(self) -> Role:
        return classify(self.message.roles)


@dataclasses.dataclass(frozen=True)
class LaunchResult:
    account: schemas.Account
    resource: schemas.PublishedResource
    lti_user: schemas.LtiUser
    redirect_url: str
    force_embed: bool = False
    migrated_from: str | None = None


class LaunchService:
    """Validates launches and records their effects."""

    def __init__(
        self,
        resolver: IdentityResolver | None = None,
        now: Callable[[], float] = time.time,
    ) -> None:
        self.resolver = resolver or IdentityResolver(now=now)
        self.now = now

    # noinspection PyMethodMayBeStatic
    async def validate_launch(self, message: LaunchMessage) -> ValidatedLaunch:
        """Resolves the registration, deployment and resource of a launch.

        Raises ``InvalidRegistration``, ``InvalidDeployment``, ``MissingId``
        or ``InvalidId``.
        """
        registration = await db.registration_store.find_one(
            message.issuer, message.client_id
        )
        if registration is None or registration.id is None:
            logger.error(
                "no registration for %s / %s", message.issuer, message.client_id
            )
            raise errors.InvalidRegistration(
                f"{message.issuer} client {message.client_id}"
            )

        deployment = None
        if message.deployment_id:
            deployment = await db.deployment_store.find_by_registration(
                registration.id, message.deployment_id
            )
        if deployment is None:
            logger.error(
                "unknown deployment [%s] for [%s]",
                message.deployment_id,
                registration.id,
            )
            raise errors.InvalidDeployment(str(message.deployment_id))

        if not (message.resource_link or {}).get("id"):
            raise errors.InvalidToken("launch has no resource_link claim")

        if (resource_id := message.resource_id) is None:
            raise errors.MissingId("launch has no custom id parameter")
        resource = await db.resource_store.get_resource(resource_id)
        if resource is None or not resource.enabled:
            logger.error("resource [%s] not found or disabled", resource_id)
            raise errors.InvalidId(f"invalid published resource id: {resource_id}")

        return ValidatedLaunch(message, registration, deployment, resource)

    async def user_launches_tool(
        self, identity: ResolvedIdentity, launch: ValidatedLaunch
    ) -> LaunchResult:
        """Records the launch of the resource by the resolved account.

        Relaunching refreshes the existing context, resource link and user
        rows instead of adding new ones.
        """
        message, deployment, resource = (
            launch.message,
            launch.deployment,
            launch.resource,
        )
        account = identity.account
        assert account.id is not None  # noqa: S101

        context_id = None
        if (context_claim := message.context) and context_claim.get("id"):
            context = await db.context_store.save(
                deployment.add_context(
                    str(context_claim["id"]), context_claim.get("type")
                )
            )
            context_id = context.id

        link = deployment.add_resource_link(
            str(message.resource_link["id"]),  # type: ignore[index]
            resource.id,
            context_id,
        )
        existing = await db.resource_link_store.find_by_resource_link_id(
            link.deployment_id, link.resource_link_id
        )
        # services the platform leaves out of a launch stay as last seen
        if (nrps := message.names_role_service) and nrps.get("context_memberships_url"):
            link = link.with_names_and_roles_service(
                nrps["context_memberships_url"], nrps.get("service_versions") or []
            )
        elif existing and existing.nrps_context_memberships_url:
            link = link.with_names_and_roles_service(
                existing.nrps_context_memberships_url,
                list(existing.nrps_service_versions),
            )
        if (ags := message.assignment_grade_service) and (
            ags.get("lineitem") or ags.get("lineitems")
        ):
            link = link.with_grade_service(
                ags.get("lineitems"), ags.get("lineitem"), ags.get("scope") or []
            )
        elif existing and existing.has_grade_service:
            link = link.with_grade_service(
                existing.ags_lineitems_url,
                existing.ags_lineitem_url,
                list(existing.ags_scopes),
            )
        link = await db.resource_link_store.save(link)

        lti_user = await db.user_store.save(
            link.add_user(message.subject, account.id, lastaccess=int(self.now()))
        )

        role = launch.role
        course_role = (
            resource.role_instructor if role.is_privileged else resource.role_learner
        )
        await db.enrolment_store.enrol(account.id, resource.id, course_role)
        if not await db.enrolment_store.is_user_visible(resource, account.id):
            raise errors.InvalidId(f"resource {resource.id} is not available")

        force_embed = not role.is_privileged and (
            message.force_embed or resource.is_module_level
        )

        if (
            identity.migrated_from
            and deployment.legacy_consumer_key != identity.migrated_from
        ):
            await db.deployment_store.save(
                deployment.with_legacy_consumer_key(identity.migrated_from)
            )
            logger.info(
                "deployment [%s] migrated from consumer [%s]",
                deployment.id,
                identity.migrated_from,
            )

        logger.info(
            "account [%s] launched resource [%s] as %s",
            account.id,
            resource.id,
            course_role,
        )
        return LaunchResult(
            account=account,
            resource=resource,
            lti_user=lti_user,
            redirect_url=resource.url or f"{settings.PATH_PREFIX}/",
            force_embed=force_embed,
            migrated_from=identity.migrated_from,
        )


@dataclasses.dataclass(frozen=True)
class LaunchComplete:
    result: LaunchResult


@dataclasses.dataclass(frozen=True)
class AccountChoiceRequired:
    pending: PendingAccountLink


@dataclasses.dataclass(frozen=True)
class LoginRequired:
    pending: PendingAccountLink


@dataclasses.dataclass(frozen=True)
class ConfirmationSent:
    email: str
    sent: bool


LaunchOutcome = LaunchComplete | AccountChoiceRequired


class LaunchOrchestrator:
    """Runs launches for one browser session.

    ``session`` is the request's session mapping. ``resume_url`` turns a
    launch id into the URL that resumes that launch.
    """

    def __init__(
        self,
        session: security.Session,
        resume_url: Callable[[str], str],
        service: LaunchService | None = None,
    ) -> None:
        self.session = session
        self.resume_url = resume_url
        self.service = service or LaunchService()
        self.cache = LaunchCache(security.session_id(session))

    @property
    def resolver(self) -> IdentityResolver:
        return self.service.resolver

    async def launch(self, message: LaunchMessage) -> LaunchOutcome:
        """Handles a freshly verified launch message."""
        if message.is_deep_link_launch:
            logger.error("unexpected launch type [%s]", message.message_type)
            raise errors.UnsupportedMessageType(message.message_type)
        launch_id = await self.cache.store(message)
        return await self.resume(launch_id)

    async def resume(self, launch_id: str) -> LaunchOutcome:
        """Continues a cached launch, for example after an account was linked."""
        message = await self.cache.retrieve(launch_id)
        launch = await self.service.validate_launch(message)

        mode = settings.PROVISIONING_AUTO_ONLY
        if launch.role.is_privileged:
            mode = settings.PROVISIONING_MODE_INSTRUCTOR

        identity = await self.resolver.find_or_create_user_from_launch(
            message, allow_create=mode == settings.PROVISIONING_AUTO_ONLY
        )
        if identity is None:
            pending = account_link.load(self.session)
            if pending is None or pending.launch_id != launch_id:
                pending = PendingAccountLink.start(
                    launch_id, self.resume_url(launch_id), mode
                )
                account_link.save(self.session, pending)
            logger.info("launch [%s] waiting on an account choice", launch_id)
            return AccountChoiceRequired(pending)

        return await self._complete(launch_id, identity, launch)

    async def _complete(
        self, launch_id: str, identity: ResolvedIdentity, launch: ValidatedLaunch
    ) -> LaunchComplete:
        result = await self.service.user_launches_tool(identity, launch)
        await self.cache.purge(launch_id)
        account_link.clear(self.session)
        security.login(self.session, identity.account.id or "")
        if result.force_embed:
            self.session[security.FORCE_EMBED_KEY] = True
        else:
            self.session.pop(security.FORCE_EMBED_KEY, None)
        return LaunchComplete(result)

    def _pending(self, link_token: str | None) -> PendingAccountLink:
        if (pending := account_link.load(self.session)) is None:
            raise errors.LaunchNotFound("no account link in progress")
        if not pending.matches(link_token):
            logger.warning("stale link token for launch [%s]", pending.launch_id)
            raise errors.InvalidToken("account link token does not match")
        return pending

    async def choose_new_account(self, link_token: str | None) -> LaunchComplete:
        """Creates a new account for the pending launch."""
        pending = self._pending(link_token)
        if not pending.allows_new_account:
            raise errors.AccountCreationDisabled()
        message = await self.cache.retrieve(pending.launch_id)
        launch = await self.service.validate_launch(message)
        account = await self.resolver.create_account(
            PlatformProfile.from_launch(message)
        )
        account_link.save(self.session, pending.moved_to(BindingState.BOUND))
        return await self._complete(
            pending.launch_id, ResolvedIdentity(account, created=True), launch
        )

    async def choose_existing_account(
        self, link_token: str | None, confirm_url: str
    ) -> LoginRequired | ConfirmationSent:
        """Starts linking the pending launch to an existing account.

        An anonymous user is sent to log in first. Once logged in, a
        confirmation email goes to the account's address.
        """
        pending = self._pending(link_token)
        if (account_id := security.current_account_id(self.session)) is None:
            return LoginRequired(pending)
        if (account := await self.resolver.accounts.find_user(account_id)) is None:
            security.logout(self.session)
            raise errors.LaunchNotFound("session account no longer exists")

        message = await self.cache.retrieve(pending.launch_id)
        await self.service.validate_launch(message)
        sent = await self.resolver.send_account_link_confirmation_email(
            account,
            message,
            confirm_url=confirm_url,
            return_url=pending.return_url,
        )
        if sent:
            # the rotated token stops a resubmitted form sending a second email
            pending = pending.rotated().moved_to(
                BindingState.PENDING_EMAIL_CONFIRMATION
            )
            account_link.save(self.session, pending)
        return ConfirmationSent(account.email, sent)
