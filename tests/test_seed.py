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

from ltiauth import db, security
from ltiauth.db import seed
from tests import ISSUER, DatabaseTestCase

SEED_DATA = {
    "registrations": [
        {
            "name": "Example LMS",
            "platform_issuer": ISSUER,
            "client_id": "client-1",
            "auth_request_url": f"{ISSUER}/auth",
            "jwks_url": f"{ISSUER}/jwks",
            "deployments": [
                {"name": "Main", "deployment_id": "1", "legacy_consumer_key": "KEY"}
            ],
        }
    ],
    "resources": [{"id": "r1", "name": "Algebra", "course_id": "algebra-101"}],
    "accounts": [
        {
            "username": "admin",
            "password": "secret",
            "firstname": "Site",
            "lastname": "Admin",
            "email": "admin@example.edu",
        }
    ],
    "legacy_consumers": [{"consumer_key": "KEY", "secrets": ["s1", "s2"]}],
}


class SeedTestCase(DatabaseTestCase):
    async def test_init_db(self) -> None:
        await seed.init_db(SEED_DATA)
        # seeding twice is harmless
        await seed.init_db(SEED_DATA)

        registration = await db.registration_store.find_one(ISSUER)
        deployments = await db.deployment_store.list_by_registration(registration.id)
        self.assertEqual(len(deployments), 1)
        self.assertEqual(deployments[0].legacy_consumer_key, "KEY")
        self.assertIsNotNone(await db.resource_store.get_resource("r1"))
        self.assertEqual(sorted(await db.legacy_store.secrets_for("KEY")), ["s1", "s2"])
        self.assertIsNotNone(await security.authenticate("admin", "secret"))
        self.assertEqual(len(await db.key_store.json_web_keys()), 1)
