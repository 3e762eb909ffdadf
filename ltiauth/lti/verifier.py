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
id_token verification

The platform posts the id_token through the user-agent, so nothing in it
can be trusted until the signature is checked against the platform's
published key set and the standard claims are validated.

see https://www.imsglobal.org/spec/security/v1p0/#authentication-response-validation
"""

import base64
import binascii
import json
import logging
import time
from typing import Any

import joserfc.errors
import joserfc.jwt

from .. import db, errors, keys, schemas, settings
from .claims import LaunchMessage

logger = logging.getLogger(__name__)

ALGORITHMS = ["RS256", "RS384", "RS512"]


def nonce_key(nonce: str) -> str:
    return f"lti1p3-nonce-{nonce}"


async def remember_nonce(nonce: str, registration_id: str) -> None:
    """Records a nonce sent to the platform during login initiation."""
    await db.cache_store.put(
        key=nonce_key(nonce),
        value=registration_id,
        ttl=settings.LTI_NONCE_TTL,
    )


def _b64_json(segment: str) -> dict[str, Any]:
    padded = segment + "=" * (-len(segment) % 4)
    value = json.loads(base64.urlsafe_b64decode(padded))
    if not isinstance(value, dict):
        raise ValueError("JSON object expected")
    return value


def unverified_parts(id_token: str) -> tuple[dict[str, Any], dict[str, Any]]:
    """Returns the header and claims of a token without checking anything."""
    try:
        header, payload, _ = id_token.split(".")
        return _b64_json(header), _b64_json(payload)
    except (ValueError, binascii.Error) as exc:
        raise errors.InvalidToken("malformed id_token") from exc


async def resolve_registration(
    claims: dict[str, Any],
) -> schemas.ApplicationRegistration:
    """Returns the registration the token was issued for.

    Raises ``UnknownIssuer`` if the issuer is not registered and
    ``AudienceMismatch`` if none of its registrations is in the audience.
    """
    issuer = claims.get("iss")
    if not issuer or not (found := await db.registration_store.find_by_issuer(issuer)):
        logger.error("no registration for issuer [%s]", issuer)
        raise errors.UnknownIssuer(str(issuer))

    aud = claims.get("aud")
    audience = [aud] if isinstance(aud, str) else list(aud or [])
    azp = claims.get("azp")
    if len(audience) > 1:
        # with several audiences the authorized party names the client
        if azp is None:
            raise errors.AudienceMismatch("aud lists several clients and no azp")
        if azp not in audience:
            raise errors.AudienceMismatch(f"azp {azp} not in aud")

    matched = [r for r in found if r.client_id in audience]
    if len(audience) > 1:
        matched = [r for r in matched if r.client_id == azp]
    if len(matched) != 1:
        logger.error("aud %s does not match a client of issuer [%s]", audience, issuer)
        raise errors.AudienceMismatch(f"aud does not match a client of {issuer}")
    return matched[0]


async def signing_key(
    registration: schemas.ApplicationRegistration, kid: str | None
) -> Any:
    """Returns the platform key for ``kid``.

    An unknown ``kid`` usually means the platform rotated its keys, so the
    key set is fetched again once before giving up.
    """
    jwks_url = str(registration.jwks_url)
    key_set = await keys.get_jwks_from_url(jwks_url)
    if (key := keys.find_key(key_set, kid)) is not None:
        return key

    logger.warning("kid [%s] not found for [%s], refreshing JWKS", kid, jwks_url)
    key_set = await keys.get_jwks_from_url(jwks_url, use_cache=False)
    if (key := keys.find_key(key_set, kid)) is not None:
        return key
    raise errors.InvalidSignature(f"no platform key with kid {kid}")


def validate_claims(claims: dict[str, Any], now: int) -> None:
    """Checks the subject and the token lifetime."""
    leeway = settings.LTI_CLOCK_LEEWAY
    registry = joserfc.jwt.JWTClaimsRegistry(
        now=now,
        leeway=leeway,
        sub={"essential": True},
        exp={"essential": True},
        iat={"essential": True},
    )
    try:
        registry.validate(claims)
    except joserfc.errors.ExpiredTokenError as exc:
        raise errors.ExpiredToken("id_token has expired") from exc
    except joserfc.errors.JoseError as exc:
        raise errors.InvalidToken(str(exc)) from exc

    iat = int(claims["iat"])
    if iat > now + leeway:
        raise errors.InvalidToken("id_token issued in the future")
    if iat < now - settings.LTI_MAX_TOKEN_AGE:
        raise errors.ExpiredToken("id_token is too old")


async def verify(id_token: str, *, now: float | None = None) -> LaunchMessage:
    """Returns the validated launch message carried by ``id_token``.

    The nonce is consumed as the last step, so a token can only be
    accepted once.
    """
    now = int(time.time() if now is None else now)
    header, unverified = unverified_parts(id_token)
    registration = await resolve_registration(unverified)
    key = await signing_key(registration, header.get("kid"))

    try:
        token = joserfc.jwt.decode(id_token, key, algorithms=ALGORITHMS)
    except joserfc.errors.JoseError as exc:
        logger.error("id_token signature rejected for [%s]: %r", registration.id, exc)
        raise errors.InvalidSignature("id_token signature") from exc

    claims = dict(token.claims)
    logger.debug("IDToken claims: %r", claims)
    validate_claims(claims, now)

    if claims.get("iss") != registration.platform_issuer:
        raise errors.UnknownIssuer(str(claims.get("iss")))

    try:
        message = LaunchMessage(claims)
    except ValueError as exc:
        raise errors.InvalidToken(str(exc)) from exc

    if not (nonce := message.nonce):
        raise errors.NonceReplay("id_token has no nonce")
    cached = await db.cache_store.consume(nonce_key(nonce))
    if cached is None or cached != registration.id:
        logger.error(
            "nonce not found or registration not matched: [%s] != [%s]",
            cached,
            registration.id,
        )
        raise errors.NonceReplay("nonce unknown or already used")

    return message
