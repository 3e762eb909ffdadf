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

import urllib.parse
from unittest.mock import patch

from ltiauth import db, errors, mail, schemas, security, settings
from ltiauth.db import models
from ltiauth.lti import account_link, claims, identity, migration
from ltiauth.lti.account_link import BindingState
from ltiauth.lti.identity import IdentityResolver
from ltiauth.lti.launch import (
    AccountChoiceRequired,
    ConfirmationSent,
    LaunchComplete,
    LaunchOrchestrator,
    LaunchService,
    LoginRequired,
)
from tests import (
    CLIENT_ID,
    DEPLOYMENT_ID,
    INSTRUCTOR,
    ISSUER,
    RESOURCE_ID,
    DatabaseTestCase,
    launch_claims,
    launch_message,
)

CONFIRM_URL = "https://tool.example.com/api/lti/v1.3/confirm-link"
NRPS_URL = "https://lms.example.edu/api/lti/courses/1/names_and_roles"
LINEITEMS_URL = "https://lms.example.edu/api/lti/courses/1/line_items"


def resume_url(launch_id: str) -> str:
    return f"/api/lti/v1.3/launches/{launch_id}"


class LaunchTestCase(DatabaseTestCase):
    async def asyncSetUp(self) -> None:
        await super().asyncSetUp()
        self.registration, self.deployment, self.resource = await self.seed_platform()
        self.sender = mail.LoggingEmailSender()
        self.session: dict = {}
        self.orchestrator = self.new_orchestrator(self.session)

    def new_orchestrator(self, session: dict) -> LaunchOrchestrator:
        service = LaunchService(IdentityResolver(email_sender=self.sender))
        return LaunchOrchestrator(session, resume_url, service)

    async def create_manual_account(self) -> schemas.Account:
        account_id = await db.account_store.create_user(
            schemas.Account(
                username="teacher",
                firstname="Grace",
                lastname="Hopper",
                email="grace@example.edu",
            )
        )
        return await db.account_store.find_user(account_id)

    async def lti_user(self, subject: str = "user-1") -> schemas.LtiUser | None:
        return await db.user_store.find_by_source(
            RESOURCE_ID, self.deployment.id, subject
        )

    def sent_link_params(self) -> dict[str, str]:
        body = self.sender.outbox[-1].get_body(("plain",)).get_content()
        link = next(w for w in body.split() if w.startswith(CONFIRM_URL))
        return dict(urllib.parse.parse_qsl(urllib.parse.urlparse(link).query))


class LearnerLaunchTestCase(LaunchTestCase):
    async def test_first_launch_creates_account(self) -> None:
        outcome = await self.orchestrator.launch(launch_message())
        self.assertIsInstance(outcome, LaunchComplete)
        result = outcome.result
        self.assertEqual(result.redirect_url, f"{settings.PATH_PREFIX}/")
        self.assertFalse(result.force_embed)
        self.assertEqual(
            result.account.username, identity.lti_username(ISSUER, "user-1")
        )
        self.assertEqual(security.current_account_id(self.session), result.account.id)

        lti_user = await self.lti_user()
        self.assertEqual(lti_user.local_id, result.account.id)
        linked = await db.user_store.find_by_resource_link(
            result.lti_user.resource_link_id
        )
        self.assertListEqual([u.id for u in linked], [lti_user.id])
        enrolment = await db.enrolment_store.enrolment(result.account.id, RESOURCE_ID)
        self.assertEqual(enrolment.role, "student")
        context = await db.context_store.find_by_context_id(
            self.deployment.id, "course-1"
        )
        self.assertIsNotNone(context)

    async def test_relaunch_is_idempotent(self) -> None:
        first = await self.orchestrator.launch(launch_message())
        second = await self.orchestrator.launch(launch_message(nonce="nonce-2"))
        self.assertEqual(second.result.account.id, first.result.account.id)
        self.assertEqual(second.result.lti_user.id, first.result.lti_user.id)
        users = await db.user_store.find_by_deployment(self.deployment.id)
        self.assertEqual(len(users), 1)
        self.assertEqual(await self.count_rows(models.Context), 1)
        self.assertEqual(await self.count_rows(models.ResourceLink), 1)
        self.assertEqual(await self.count_rows(models.UserResourceLink), 1)
        self.assertEqual(await self.count_rows(models.Enrolment), 1)

    async def test_resource_url_and_force_embed(self) -> None:
        await db.resource_store.save(
            self.resource.model_copy(
                update={"url": "/course/view.php?id=7", "context_level": "module"}
            )
        )
        outcome = await self.orchestrator.launch(launch_message())
        self.assertEqual(outcome.result.redirect_url, "/course/view.php?id=7")
        self.assertTrue(outcome.result.force_embed)
        self.assertTrue(self.session[security.FORCE_EMBED_KEY])

    async def test_names_role_service_url_kept(self) -> None:
        nrps = {"context_memberships_url": NRPS_URL, "service_versions": ["2.0"]}
        await self.orchestrator.launch(
            launch_message(**{claims.MESSAGE_NRPS_KEY: nrps})
        )
        await self.orchestrator.launch(launch_message(nonce="nonce-2"))
        links = await db.resource_link_store.find_with_names_and_roles()
        self.assertEqual(len(links), 1)
        self.assertEqual(links[0].nrps_context_memberships_url, NRPS_URL)

    async def test_grade_service_kept(self) -> None:
        ags = {
            "scope": ["https://purl.imsglobal.org/spec/lti-ags/scope/score"],
            "lineitems": LINEITEMS_URL,
            "lineitem": f"{LINEITEMS_URL}/7",
        }
        await self.orchestrator.launch(launch_message(**{claims.MESSAGE_AGS_KEY: ags}))
        await self.orchestrator.launch(launch_message(nonce="nonce-2"))
        links = await db.resource_link_store.find_with_grade_service()
        self.assertEqual(len(links), 1)
        self.assertEqual(links[0].ags_lineitems_url, LINEITEMS_URL)
        self.assertEqual(links[0].ags_lineitem_url, f"{LINEITEMS_URL}/7")
        self.assertTupleEqual(links[0].ags_scopes, tuple(ags["scope"]))

    async def test_deep_link_not_supported(self) -> None:
        msg = launch_message(**{claims.MESSAGE_TYPE_KEY: claims.DEEP_LINKING_REQUEST})
        with self.assertRaises(errors.UnsupportedMessageType):
            await self.orchestrator.launch(msg)

    async def test_missing_resource_id(self) -> None:
        msg = launch_message(**{claims.MESSAGE_CUSTOM_KEY: {}})
        with self.assertRaises(errors.MissingId):
            await self.orchestrator.launch(msg)
        self.assertIsNone(await self.lti_user())
        self.assertIsNone(
            await db.account_store.find_user_by_username(
                identity.lti_username(ISSUER, "user-1")
            )
        )

    async def test_unknown_resource_id(self) -> None:
        msg = launch_message(**{claims.MESSAGE_CUSTOM_KEY: {"id": "nope"}})
        with self.assertRaises(errors.InvalidId):
            await self.orchestrator.launch(msg)
        self.assertIsNone(
            await db.account_store.find_user_by_username(
                identity.lti_username(ISSUER, "user-1")
            )
        )

    async def test_disabled_resource(self) -> None:
        await db.resource_store.save(
            self.resource.model_copy(update={"enabled": False})
        )
        with self.assertRaises(errors.InvalidId):
            await self.orchestrator.launch(launch_message())

    async def test_unknown_deployment(self) -> None:
        msg = launch_message(**{claims.MESSAGE_DEPLOYMENT_ID_KEY: "deployment-9"})
        with self.assertRaises(errors.InvalidDeployment):
            await self.orchestrator.launch(msg)

    async def test_missing_resource_link(self) -> None:
        claims_ = launch_claims()
        del claims_[claims.MESSAGE_RESOURCE_LINK_KEY]
        with self.assertRaises(errors.InvalidToken):
            await self.orchestrator.launch(claims.LaunchMessage(claims_))

    async def test_legacy_user_migrated(self) -> None:
        await db.legacy_store.add_secret("CONSUMER_1", "s1")
        await db.legacy_store.add_secret("CONSUMER_1", "s2")
        legacy_id = await db.account_store.create_user(
            schemas.Account(
                username=db.stores.legacy.legacy_username("CONSUMER_1", "123-abc"),
                firstname="Legacy",
                lastname="User",
                email="legacy@example.edu",
            )
        )
        data = launch_claims()
        data[claims.MESSAGE_MIGRATION_KEY] = {
            "oauth_consumer_key": "CONSUMER_1",
            "user_id": "123-abc",
            "oauth_consumer_key_sign": migration.sign(
                "CONSUMER_1",
                "s2",
                deployment_id=DEPLOYMENT_ID,
                issuer=ISSUER,
                client_id=CLIENT_ID,
                exp=data["exp"],
                nonce=data["nonce"],
            ),
        }
        outcome = await self.orchestrator.launch(claims.LaunchMessage(data))
        self.assertEqual(outcome.result.account.id, legacy_id)
        self.assertEqual(outcome.result.migrated_from, "CONSUMER_1")
        deployment = await db.deployment_store.get(self.deployment.id)
        self.assertEqual(deployment.legacy_consumer_key, "CONSUMER_1")


class InstructorLaunchTestCase(LaunchTestCase):
    def instructor_launch(self, **overrides) -> claims.LaunchMessage:
        return launch_message(**{claims.MESSAGE_ROLES_KEY: [INSTRUCTOR]}, **overrides)

    async def test_account_choice_required(self) -> None:
        outcome = await self.orchestrator.launch(self.instructor_launch())
        self.assertIsInstance(outcome, AccountChoiceRequired)
        pending = account_link.load(self.session)
        self.assertEqual(pending, outcome.pending)
        self.assertEqual(pending.state, BindingState.PENDING_LOGIN_CHOICE)
        self.assertEqual(pending.return_url, resume_url(pending.launch_id))
        self.assertIsNone(security.current_account_id(self.session))
        self.assertIsNone(await self.lti_user())

    async def test_auto_only_mode_creates_account(self) -> None:
        with patch.object(
            settings, "PROVISIONING_MODE_INSTRUCTOR", settings.PROVISIONING_AUTO_ONLY
        ):
            outcome = await self.orchestrator.launch(self.instructor_launch())
        self.assertIsInstance(outcome, LaunchComplete)
        enrolment = await db.enrolment_store.enrolment(
            outcome.result.account.id, RESOURCE_ID
        )
        self.assertEqual(enrolment.role, "teacher")

    async def test_choose_new_account(self) -> None:
        choice = await self.orchestrator.launch(self.instructor_launch())
        token = choice.pending.link_token
        outcome = await self.orchestrator.choose_new_account(token)
        self.assertIsInstance(outcome, LaunchComplete)
        self.assertFalse(outcome.result.force_embed)
        self.assertIsNone(account_link.load(self.session))
        # a resubmitted choice has nothing left to act on
        with self.assertRaises(errors.LaunchNotFound):
            await self.orchestrator.choose_new_account(token)

    async def test_choose_new_account_stale_token(self) -> None:
        await self.orchestrator.launch(self.instructor_launch())
        with self.assertRaises(errors.InvalidToken):
            await self.orchestrator.choose_new_account("stale")

    async def test_choose_new_account_existing_only(self) -> None:
        with patch.object(
            settings,
            "PROVISIONING_MODE_INSTRUCTOR",
            settings.PROVISIONING_PROMPT_EXISTING_ONLY,
        ):
            choice = await self.orchestrator.launch(self.instructor_launch())
        with self.assertRaises(errors.AccountCreationDisabled):
            await self.orchestrator.choose_new_account(choice.pending.link_token)

    async def test_link_existing_account(self) -> None:
        account = await self.create_manual_account()
        choice = await self.orchestrator.launch(self.instructor_launch())
        token = choice.pending.link_token

        outcome = await self.orchestrator.choose_existing_account(token, CONFIRM_URL)
        self.assertIsInstance(outcome, LoginRequired)
        self.assertListEqual(self.sender.outbox, [])

        security.login(self.session, account.id)
        outcome = await self.orchestrator.choose_existing_account(token, CONFIRM_URL)
        self.assertEqual(outcome, ConfirmationSent(account.email, True))
        self.assertEqual(len(self.sender.outbox), 1)
        pending = account_link.load(self.session)
        self.assertEqual(pending.state, BindingState.PENDING_EMAIL_CONFIRMATION)

        # the form can not be submitted twice
        with self.assertRaises(errors.InvalidToken):
            await self.orchestrator.choose_existing_account(token, CONFIRM_URL)
        self.assertEqual(len(self.sender.outbox), 1)

        binding = await db.binding_store.find(
            identity.hash_identifier(ISSUER), identity.hash_identifier("user-1")
        )
        self.assertFalse(binding.is_confirmed)
        self.assertEqual(binding.account_id, account.id)

        params = self.sent_link_params()
        self.assertEqual(params["returnurl"], choice.pending.return_url)
        confirmed = await self.orchestrator.resolver.confirm_user_binding(
            params["iss"], params["sub"], params["userid"], params["token"]
        )
        self.assertTrue(confirmed)

        outcome = await self.orchestrator.resume(choice.pending.launch_id)
        self.assertIsInstance(outcome, LaunchComplete)
        self.assertEqual(outcome.result.account.id, account.id)
        enrolment = await db.enrolment_store.enrolment(account.id, RESOURCE_ID)
        self.assertEqual(enrolment.role, "teacher")

    async def test_confirmation_binds_link_account_not_session(self) -> None:
        account = await self.create_manual_account()
        choice = await self.orchestrator.launch(self.instructor_launch())
        security.login(self.session, account.id)
        await self.orchestrator.choose_existing_account(
            choice.pending.link_token, CONFIRM_URL
        )
        params = self.sent_link_params()

        # a different browser follows the link while logged in as someone else
        other_session: dict = {}
        security.login(other_session, "someone-else")
        resolver = self.new_orchestrator(other_session).resolver
        self.assertTrue(
            await resolver.confirm_user_binding(
                params["iss"], params["sub"], params["userid"], params["token"]
            )
        )
        self.assertEqual(
            await resolver.get_user_binding(ISSUER, "user-1"), account.id
        )

    async def test_pending_launch_is_scoped_to_session(self) -> None:
        choice = await self.orchestrator.launch(self.instructor_launch())
        other = self.new_orchestrator({})
        with self.assertRaises(errors.LaunchNotFound):
            await other.resume(choice.pending.launch_id)
