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
LTI 1.1 to LTI 1.3 migration

Validates the ``lti1p1`` claim a platform sends while it migrates a tool
from LTI 1.1, so users of the 1.1 consumer keep their local accounts.

see https://www.imsglobal.org/spec/lti/v1p3/migr#lti-1-1-migration-claim
"""

import base64
import hashlib
import hmac
import logging
from collections.abc import Iterable

from .. import errors
from .claims import LaunchMessage, MigrationClaim

logger = logging.getLogger(__name__)


def sign(
    consumer_key: str,
    secret: str,
    *,
    deployment_id: str,
    issuer: str,
    client_id: str,
    exp: int | str,
    nonce: str,
) -> str:
    """Returns the ``oauth_consumer_key_sign`` value for a launch.

    see https://www.imsglobal.org/spec/lti/v1p3/migr#oauth_consumer_key_sign
    """
    base_string = "&".join(
        (consumer_key, deployment_id, issuer, client_id, str(exp), nonce)
    )
    digest = hmac.new(
        secret.encode("utf-8"), base_string.encode("utf-8"), hashlib.sha256
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def is_applicable(message: LaunchMessage) -> bool:
    """Returns True if the launch carries a migration claim with a consumer key."""
    claim = message.migration_claim
    return claim is not None and claim.consumer_key is not None


def validate(message: LaunchMessage, secrets: Iterable[str]) -> str | None:
    """Returns the legacy user id vouched for by the launch's migration claim.

    Returns None when the launch has no migration claim or the claim does
    not name a consumer key, which is not an error. Otherwise raises
    ``MissingSignature`` when the claim is unsigned, ``MissingConsumerKey``
    when there are no secrets to check against and ``InvalidSignature``
    when no secret reproduces the signature.
    """
    claim = message.migration_claim
    if claim is None or claim.consumer_key is None:
        return None
    if claim.signature is None:
        logger.warning("migration claim for [%s] is not signed", claim.consumer_key)
        raise errors.MissingSignature(f"unsigned claim for {claim.consumer_key}")

    secrets = list(secrets)
    if not secrets:
        logger.warning("no legacy secrets known for [%s]", claim.consumer_key)
        raise errors.MissingConsumerKey(claim.consumer_key)

    if not _matches_any(message, claim, secrets):
        logger.warning("migration signature mismatch for [%s]", claim.consumer_key)
        raise errors.InvalidSignature(f"migration claim for {claim.consumer_key}")

    return claim.user_id or message.subject


def _matches_any(
    message: LaunchMessage, claim: MigrationClaim, secrets: list[str]
) -> bool:
    assert claim.consumer_key is not None  # noqa: S101
    assert claim.signature is not None  # noqa: S101
    given = claim.signature.encode("utf-8")
    matched = False
    # every secret is tried so timing does not tell which one matched
    for secret in secrets:
        expected = sign(
            claim.consumer_key,
            secret,
            deployment_id=message.deployment_id or "",
            issuer=message.issuer,
            client_id=message.client_id,
            exp=message.expires_at,
            nonce=message.nonce or "",
        )
        if hmac.compare_digest(expected.encode("ascii"), given):
            matched = True
    return matched
