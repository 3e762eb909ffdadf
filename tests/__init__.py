import os
import pathlib
import tempfile
import time
import unittest
from typing import Any

TEST_DIR = pathlib.Path(__file__).parent
TEST_DB_DIR = tempfile.mkdtemp(prefix="ltiauth-tests-")

# must be set before ``ltiauth.settings`` is first imported
os.environ.setdefault("LTIAUTH_ENV", "local")
os.environ.setdefault("LTIAUTH_SECRET_KEY", "not-a-secret")
os.environ["LTIAUTH_DB_URL"] = f"sqlite+aiosqlite:///{TEST_DB_DIR}/ltiauth.sqlite"

import joserfc.jwk  # noqa: E402
import joserfc.jwt  # noqa: E402
import sqlalchemy as sa  # noqa: E402

from ltiauth import db, keys, schemas  # noqa: E402
from ltiauth.lti import claims as lti_claims  # noqa: E402

ISSUER = "https://lms.example.edu"
CLIENT_ID = "client-1"
DEPLOYMENT_ID = "deployment-1"
RESOURCE_ID = "resource-1"

INSTRUCTOR = "http://purl.imsglobal.org/vocab/lis/v2/membership#Instructor"
LEARNER = "http://purl.imsglobal.org/vocab/lis/v2/membership#Learner"

PLATFORM_KEY = joserfc.jwk.RSAKey.generate_key(
    2048, parameters={"kid": "platform-key-1"}, private=True
)


def platform_key_set(*key: Any) -> joserfc.jwk.KeySet:
    return joserfc.jwk.KeySet(list(key or [PLATFORM_KEY]))


def launch_claims(**overrides: Any) -> dict[str, Any]:
    """Returns the claims of a resource link launch by a learner."""
    now = int(time.time())
    claims: dict[str, Any] = {
        "iss": ISSUER,
        "sub": "user-1",
        "aud": CLIENT_ID,
        "iat": now,
        "exp": now + 300,
        "nonce": "nonce-1",
        "given_name": "Ada",
        "family_name": "Lovelace",
        "email": "ada@example.edu",
        lti_claims.MESSAGE_VERSION_KEY: "1.3.0",
        lti_claims.MESSAGE_TYPE_KEY: lti_claims.RESOURCE_LINK_REQUEST,
        lti_claims.MESSAGE_DEPLOYMENT_ID_KEY: DEPLOYMENT_ID,
        lti_claims.MESSAGE_ROLES_KEY: [LEARNER],
        lti_claims.MESSAGE_RESOURCE_LINK_KEY: {"id": "link-1"},
        lti_claims.MESSAGE_CONTEXT_KEY: {"id": "course-1", "type": ["CourseOffering"]},
        lti_claims.MESSAGE_CUSTOM_KEY: {"id": RESOURCE_ID},
    }
    claims.update(overrides)
    return claims


def launch_message(**overrides: Any) -> lti_claims.LaunchMessage:
    return lti_claims.LaunchMessage(launch_claims(**overrides))


def sign_token(claims: dict[str, Any], key: Any = PLATFORM_KEY) -> str:
    header = {"alg": "RS256", "kid": key.kid}
    return joserfc.jwt.encode(header, claims, key)


class DatabaseTestCase(unittest.IsolatedAsyncioTestCase):
    """Runs each test against a freshly created schema."""

    async def asyncSetUp(self) -> None:
        keys.clear_cache()
        await db.drop_tables()
        await db.create_tables()

    async def asyncTearDown(self) -> None:
        await db.engine.dispose()

    async def seed_platform(
        self, **resource: Any
    ) -> tuple[
        schemas.ApplicationRegistration,
        schemas.Deployment,
        schemas.PublishedResource,
    ]:
        """Stores a registration, one of its deployments and a resource."""
        registration = await db.registration_store.save(
            schemas.ApplicationRegistration(
                name="Example LMS",
                platform_issuer=ISSUER,
                client_id=CLIENT_ID,
                auth_request_url=f"{ISSUER}/auth",
                jwks_url=f"{ISSUER}/jwks",
                access_token_url=f"{ISSUER}/token",
            )
        )
        deployment = await db.deployment_store.save(
            registration.add_tool_deployment("Main", DEPLOYMENT_ID)
        )
        published = schemas.PublishedResource(
            id=RESOURCE_ID,
            name="Algebra",
            course_id="algebra-101",
            **resource,
        )
        await db.resource_store.save(published)
        return registration, deployment, published

    async def count_rows(self, model: Any) -> int:
        """Returns the number of rows in the table of ``model``."""
        stmt = sa.select(sa.func.count()).select_from(model)
        async with db.async_session() as session:
            return (await session.execute(stmt)).scalar_one()
