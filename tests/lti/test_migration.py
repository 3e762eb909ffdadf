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

import unittest

from ltiauth import errors
from ltiauth.lti import claims, migration
from tests import CLIENT_ID, DEPLOYMENT_ID, ISSUER, launch_claims


def signed_message(secret: str, consumer_key: str = "CONSUMER_1", **claim):
    data = launch_claims()
    signature = migration.sign(
        consumer_key,
        secret,
        deployment_id=DEPLOYMENT_ID,
        issuer=ISSUER,
        client_id=CLIENT_ID,
        exp=data["exp"],
        nonce=data["nonce"],
    )
    data[claims.MESSAGE_MIGRATION_KEY] = {
        "oauth_consumer_key": consumer_key,
        "oauth_consumer_key_sign": signature,
        **claim,
    }
    return claims.LaunchMessage(data)


class MigrationTestCase(unittest.TestCase):
    def test_sign_is_base64_hmac_sha256(self) -> None:
        signature = migration.sign(
            "key",
            "secret",
            deployment_id="d",
            issuer="i",
            client_id="c",
            exp=1,
            nonce="n",
        )
        self.assertEqual(len(signature), 44)
        self.assertTrue(signature.endswith("="))

    def test_no_claim_is_not_an_error(self) -> None:
        msg = claims.LaunchMessage(launch_claims())
        self.assertFalse(migration.is_applicable(msg))
        self.assertIsNone(migration.validate(msg, ["s1"]))

    def test_any_known_secret_validates(self) -> None:
        msg = signed_message("s2", user_id="123-abc")
        self.assertTrue(migration.is_applicable(msg))
        self.assertEqual(migration.validate(msg, ["s1", "s2", "s3"]), "123-abc")

    def test_subject_used_without_user_id(self) -> None:
        msg = signed_message("s1")
        self.assertEqual(migration.validate(msg, ["s1"]), "user-1")

    def test_mutated_signature_rejected(self) -> None:
        msg = signed_message("s1", user_id="123-abc")
        signature = msg.migration_claim.signature
        mutated = ("A" if signature[0] != "A" else "B") + signature[1:]
        msg.claims[claims.MESSAGE_MIGRATION_KEY]["oauth_consumer_key_sign"] = mutated
        with self.assertRaises(errors.InvalidSignature):
            migration.validate(msg, ["s1", "s2"])

    def test_unknown_secret_rejected(self) -> None:
        msg = signed_message("other")
        with self.assertRaises(errors.InvalidSignature):
            migration.validate(msg, ["s1", "s2"])

    def test_missing_signature(self) -> None:
        msg = claims.LaunchMessage(
            launch_claims(
                **{claims.MESSAGE_MIGRATION_KEY: {"oauth_consumer_key": "CONSUMER_1"}}
            )
        )
        with self.assertRaises(errors.MissingSignature):
            migration.validate(msg, ["s1"])

    def test_missing_consumer_secrets(self) -> None:
        msg = signed_message("s1")
        with self.assertRaises(errors.MissingConsumerKey):
            migration.validate(msg, [])
