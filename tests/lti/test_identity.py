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

from ltiauth import db, errors, mail, schemas, settings
from ltiauth.lti import claims, identity, migration
from ltiauth.lti.identity import IdentityResolver, hash_identifier
from tests import (
    CLIENT_ID,
    DEPLOYMENT_ID,
    INSTRUCTOR,
    ISSUER,
    DatabaseTestCase,
    launch_claims,
    launch_message,
)

CONFIRM_URL = "https://tool.example.com/api/lti/v1.3/confirm-link"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class IdentityHelpersTestCase(DatabaseTestCase):
    async def test_lti_username_is_stable(self) -> None:
        username = identity.lti_username(ISSUER, "user-1")
        self.assertTrue(username.startswith("lti13_"))
        self.assertEqual(username, identity.lti_username(ISSUER, "user-1"))
        self.assertNotEqual(username, identity.lti_username(ISSUER, "user-2"))

    async def test_new_account_defaults(self) -> None:
        profile = identity.PlatformProfile(issuer=ISSUER, subject="user-1")
        account = profile.new_account()
        self.assertEqual(account.firstname, "user-1")
        self.assertEqual(account.lastname, ISSUER)
        self.assertTrue(account.email.endswith("@example.com"))
        self.assertEqual(account.auth, schemas.AUTH_LTI)


class IdentityResolverTestCase(DatabaseTestCase):
    async def asyncSetUp(self) -> None:
        await super().asyncSetUp()
        self.clock = FakeClock()
        self.sender = mail.LoggingEmailSender()
        self.resolver = IdentityResolver(email_sender=self.sender, now=self.clock)

    async def create_manual_account(self, username: str = "teacher") -> schemas.Account:
        account_id = await db.account_store.create_user(
            schemas.Account(
                username=username,
                firstname="Grace",
                lastname="Hopper",
                email=f"{username}@example.edu",
            )
        )
        return await db.account_store.find_user(account_id)

    async def test_learner_account_created_and_bound(self) -> None:
        msg = launch_message()
        resolved = await self.resolver.find_or_create_user_from_launch(msg)
        self.assertTrue(resolved.created)
        self.assertEqual(resolved.account.firstname, "Ada")
        self.assertEqual(resolved.account.email, "ada@example.edu")
        self.assertEqual(
            await self.resolver.get_user_binding(ISSUER, "user-1"),
            resolved.account.id,
        )

        again = await self.resolver.find_or_create_user_from_launch(msg)
        self.assertFalse(again.created)
        self.assertEqual(again.account.id, resolved.account.id)

    async def test_profile_refreshed_on_relaunch(self) -> None:
        first = await self.resolver.find_or_create_user_from_launch(launch_message())
        again = await self.resolver.find_or_create_user_from_launch(
            launch_message(email="ada@lovelace.org")
        )
        self.assertEqual(again.account.id, first.account.id)
        stored = await db.account_store.find_user(first.account.id)
        self.assertEqual(stored.email, "ada@lovelace.org")

    async def test_no_create_returns_none(self) -> None:
        msg = launch_message(**{claims.MESSAGE_ROLES_KEY: [INSTRUCTOR]})
        self.assertIsNone(
            await self.resolver.find_or_create_user_from_launch(msg, allow_create=False)
        )

    async def test_account_creation_disabled(self) -> None:
        with patch.object(settings, "PREVENT_ACCOUNT_CREATION", True):
            with self.assertRaises(errors.AccountCreationDisabled):
                await self.resolver.find_or_create_user_from_launch(launch_message())

    async def test_binding_hashes_identifiers(self) -> None:
        account = await self.create_manual_account()
        await self.resolver.create_user_binding(ISSUER, "user-1", account.id)
        binding = await db.binding_store.find(
            hash_identifier(ISSUER), hash_identifier("user-1")
        )
        self.assertEqual(binding.account_id, account.id)
        self.assertTrue(binding.is_confirmed)

        await self.resolver.delete_user_binding(ISSUER, "user-1")
        self.assertIsNone(await self.resolver.get_user_binding(ISSUER, "user-1"))

    async def test_confirmed_binding_is_kept(self) -> None:
        first = await self.create_manual_account("first")
        second = await self.create_manual_account("second")
        await self.resolver.create_user_binding(ISSUER, "user-1", first.id)
        await self.resolver.create_user_binding(ISSUER, "user-1", second.id)
        self.assertEqual(
            await self.resolver.get_user_binding(ISSUER, "user-1"), first.id
        )

    async def test_manual_account_profile_not_refreshed(self) -> None:
        account = await self.create_manual_account()
        await self.resolver.create_user_binding(ISSUER, "user-1", account.id)
        resolved = await self.resolver.find_or_create_user_from_launch(
            launch_message()
        )
        self.assertEqual(resolved.account.firstname, "Grace")

    async def _start_link(self, account: schemas.Account) -> dict[str, str]:
        msg = launch_message(**{claims.MESSAGE_ROLES_KEY: [INSTRUCTOR]})
        sent = await self.resolver.send_account_link_confirmation_email(
            account, msg, confirm_url=CONFIRM_URL, return_url="/api/lti/v1.3/x"
        )
        self.assertTrue(sent)
        body = self.sender.outbox[-1].get_body(("plain",)).get_content()
        link = next(w for w in body.split() if w.startswith(CONFIRM_URL))
        query = urllib.parse.urlparse(link).query
        return dict(urllib.parse.parse_qsl(query))

    async def test_confirmation_email_starts_pending_binding(self) -> None:
        account = await self.create_manual_account()
        params = await self._start_link(account)

        self.assertEqual(len(self.sender.outbox), 1)
        self.assertEqual(self.sender.outbox[0]["To"], account.email)
        self.assertEqual(params["userid"], account.id)
        self.assertEqual(params["iss"], ISSUER)
        self.assertEqual(params["sub"], "user-1")
        binding = await db.binding_store.find(
            hash_identifier(ISSUER), hash_identifier("user-1")
        )
        self.assertFalse(binding.is_confirmed)
        self.assertEqual(
            binding.token_expiry, self.clock.now + settings.ACCOUNT_LINK_EXPIRY
        )
        # pending bindings are not bindings
        self.assertIsNone(await self.resolver.get_user_binding(ISSUER, "user-1"))

    async def test_abandoned_links_removed_by_next_email(self) -> None:
        account = await self.create_manual_account()
        await db.binding_store.add(
            schemas.IdentityBinding(
                account_id=account.id,
                issuer_hash=hash_identifier(ISSUER),
                subject_hash=hash_identifier("user-2"),
                token="abandoned",
                token_expiry=int(self.clock.now) - 1,
                created_at=int(self.clock.now) - settings.ACCOUNT_LINK_EXPIRY,
            )
        )
        await self._start_link(account)
        self.assertIsNone(
            await db.binding_store.find(
                hash_identifier(ISSUER), hash_identifier("user-2")
            )
        )
        self.assertIsNotNone(
            await db.binding_store.find(
                hash_identifier(ISSUER), hash_identifier("user-1")
            )
        )

    async def test_confirm_binding(self) -> None:
        account = await self.create_manual_account()
        params = await self._start_link(account)
        confirm = (ISSUER, "user-1", account.id, params["token"])

        self.assertTrue(await self.resolver.confirm_user_binding(*confirm))
        self.assertEqual(
            await self.resolver.get_user_binding(ISSUER, "user-1"), account.id
        )
        # links are single use
        self.assertFalse(await self.resolver.confirm_user_binding(*confirm))

    async def test_confirm_binding_expired(self) -> None:
        account = await self.create_manual_account()
        params = await self._start_link(account)
        self.clock.now += settings.ACCOUNT_LINK_EXPIRY + 1

        self.assertFalse(
            await self.resolver.confirm_user_binding(
                ISSUER, "user-1", account.id, params["token"]
            )
        )
        self.assertIsNone(
            await db.binding_store.find(
                hash_identifier(ISSUER), hash_identifier("user-1")
            )
        )

    async def test_confirm_binding_checks_token_and_account(self) -> None:
        account = await self.create_manual_account()
        other = await self.create_manual_account("other")
        params = await self._start_link(account)

        self.assertFalse(
            await self.resolver.confirm_user_binding(
                ISSUER, "user-1", account.id, "wrong-token"
            )
        )
        self.assertFalse(
            await self.resolver.confirm_user_binding(
                ISSUER, "user-1", other.id, params["token"]
            )
        )
        self.assertTrue(
            await self.resolver.confirm_user_binding(
                ISSUER, "user-1", account.id, params["token"]
            )
        )

    async def test_second_email_replaces_pending_binding(self) -> None:
        account = await self.create_manual_account()
        first = await self._start_link(account)
        second = await self._start_link(account)
        self.assertFalse(
            await self.resolver.confirm_user_binding(
                ISSUER, "user-1", account.id, first["token"]
            )
        )
        self.assertTrue(
            await self.resolver.confirm_user_binding(
                ISSUER, "user-1", account.id, second["token"]
            )
        )

    async def test_no_email_for_bound_identity(self) -> None:
        account = await self.create_manual_account()
        await self.resolver.create_user_binding(ISSUER, "user-1", account.id)
        sent = await self.resolver.send_account_link_confirmation_email(
            account, launch_message(), confirm_url=CONFIRM_URL, return_url="/"
        )
        self.assertFalse(sent)
        self.assertListEqual(self.sender.outbox, [])


class LegacyMigrationTestCase(DatabaseTestCase):
    async def asyncSetUp(self) -> None:
        await super().asyncSetUp()
        self.resolver = IdentityResolver(email_sender=mail.LoggingEmailSender())
        await db.legacy_store.add_secret("CONSUMER_1", "s1")
        await db.legacy_store.add_secret("CONSUMER_1", "s2")
        self.legacy_id = await db.account_store.create_user(
            schemas.Account(
                username=db.stores.legacy.legacy_username("CONSUMER_1", "123-abc"),
                firstname="Legacy",
                lastname="User",
                email="legacy@example.edu",
            )
        )

    def migration_launch(self, secret: str, roles: list[str] | None = None):
        data = launch_claims()
        if roles is not None:
            data[claims.MESSAGE_ROLES_KEY] = roles
        data[claims.MESSAGE_MIGRATION_KEY] = {
            "oauth_consumer_key": "CONSUMER_1",
            "user_id": "123-abc",
            "oauth_consumer_key_sign": migration.sign(
                "CONSUMER_1",
                secret,
                deployment_id=DEPLOYMENT_ID,
                issuer=ISSUER,
                client_id=CLIENT_ID,
                exp=data["exp"],
                nonce=data["nonce"],
            ),
        }
        return claims.LaunchMessage(data)

    async def test_learner_migrated_to_legacy_account(self) -> None:
        resolved = await self.resolver.find_or_create_user_from_launch(
            self.migration_launch("s2")
        )
        self.assertEqual(resolved.account.id, self.legacy_id)
        self.assertEqual(resolved.migrated_from, "CONSUMER_1")
        self.assertFalse(resolved.created)
        self.assertEqual(
            await self.resolver.get_user_binding(ISSUER, "user-1"), self.legacy_id
        )

    async def test_bad_signature_rejected(self) -> None:
        with self.assertRaises(errors.InvalidSignature):
            await self.resolver.find_or_create_user_from_launch(
                self.migration_launch("s3")
            )

    async def test_privileged_user_not_migrated(self) -> None:
        resolved = await self.resolver.find_or_create_user_from_launch(
            self.migration_launch("s1", roles=[INSTRUCTOR])
        )
        self.assertTrue(resolved.created)
        self.assertNotEqual(resolved.account.id, self.legacy_id)

    async def test_member_with_legacy_id(self) -> None:
        member = schemas.Member(user_id="user-9", lti11_legacy_user_id="123-abc")
        resolved = await self.resolver.find_or_create_user_from_membership(
            member, ISSUER, "CONSUMER_1"
        )
        self.assertEqual(resolved.account.id, self.legacy_id)
        self.assertEqual(
            await self.resolver.get_user_binding(ISSUER, "user-9"), self.legacy_id
        )

    async def test_member_without_legacy_account(self) -> None:
        member = schemas.Member(user_id="user-9", given_name="New")
        resolved = await self.resolver.find_or_create_user_from_membership(
            member, ISSUER, "CONSUMER_1"
        )
        self.assertTrue(resolved.created)
        self.assertEqual(resolved.account.firstname, "New")
