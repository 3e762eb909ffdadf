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
JSON Web Keys

Platform key sets used to verify id_tokens, and the tool's own private
keys used to sign client assertions for LTI Advantage Services.
"""

import datetime
import logging
import time
from typing import Any

import httpx
import joserfc.jwk

from . import aio, db, schemas, settings
from .errors import LtiServiceError

logger = logging.getLogger(__name__)


class CachedKeySet:
    def __init__(
        self,
        key_set: joserfc.jwk.KeySet,
        expire_in: float | None = None,
    ) -> None:
        self.key_set = key_set
        if expire_in is None:
            expire_in = settings.JWKS_CACHE_TTL
        self.expires_at = time.time() + expire_in

    @property
    def is_expired(self) -> bool:
        return self.expires_at <= time.time()


_jwks_cache: dict[str, CachedKeySet] = {}


async def get_jwks_from_url(url: str, use_cache: bool = True) -> joserfc.jwk.KeySet:
    """Returns a JWKS from the given URL.

    Raises ``LtiServiceError`` if the key set can not be fetched or parsed.
    """
    if use_cache:
        if cks := _jwks_cache.get(url):
            if not cks.is_expired:
                logger.info("Returning cached JWKS for %s", url)
                return cks.key_set
            logger.info("Cached JWKS for %s has expired", url)
        else:
            logger.info("Cached JWKS not found for %s", url)

    logger.info("Fetching JWKS from %s", url)
    try:
        r = await aio.http_client.get(url, timeout=settings.JWKS_FETCH_TIMEOUT)
        logger.debug("JWKS headers: %r", r.headers)
        jwks_json = r.raise_for_status().json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.error("Failed to fetch JWKS from %s: %r", url, exc)
        raise LtiServiceError(f"JWKS fetch failed: {url}", 502) from exc

    try:
        ks = joserfc.jwk.KeySet.import_key_set(jwks_json)
    except Exception as exc:
        logger.exception("Failed to import key set: %s", jwks_json)
        raise LtiServiceError(f"JWKS invalid: {url}", 502) from exc

    _jwks_cache[url] = CachedKeySet(ks)
    return ks


def find_key(key_set: joserfc.jwk.KeySet, kid: str | None) -> Any:
    """Returns the key in the set with the given ``kid``.

    A set holding a single key matches a token header without a ``kid``.
    """
    if kid is None:
        return key_set.keys[0] if len(key_set.keys) == 1 else None
    for key in key_set.keys:
        if key.kid == kid:
            return key
    return None


def clear_cache() -> None:
    _jwks_cache.clear()


async def private_keys() -> list[schemas.ToolJsonWebKey]:
    """Returns a list of private ``ToolJsonWebKey`` from the database."""
    web_keys = await db.key_store.json_web_keys()
    return [k for k in web_keys if k.is_valid]


async def json_web_private_keys() -> list[joserfc.jwk.RSAKey]:
    web_keys = await private_keys()
    return [joserfc.jwk.RSAKey.import_key(k.data.get_secret_value()) for k in web_keys]


async def private_key() -> joserfc.jwk.RSAKey:
    """Returns the default JSON Web Key from the database.

    If more than one key is stored then the key that has the greater
    ``valid_to`` date is provided.
    """
    if not (web_keys := await private_keys()):
        raise RuntimeError("JWKS_NOT_FOUND")

    main_key = web_keys[0]
    # No valid_to implies no end date. If both keys being compared have
    # no valid_to, then we select the newest key based on valid_from.
    for key in web_keys[1:]:
        if key.valid_to is not None and main_key.valid_to is not None:
            if key.valid_to > main_key.valid_to:
                main_key = key
        elif key.valid_to is None and main_key.valid_to is None:
            if key.valid_from > main_key.valid_from:
                main_key = key
        elif key.valid_to is None:
            main_key = key

    return joserfc.jwk.RSAKey.import_key(main_key.data.get_secret_value())


async def public_key_set() -> joserfc.jwk.KeySet:
    """Returns the public JSON Web Key Set of this tool.

    Each key is published under its thumbprint, which is also the ``kid``
    placed in the header of our client assertions.
    """
    pub_keys = []
    for pk in await json_web_private_keys():
        pub_keys.append(
            joserfc.jwk.RSAKey.import_key(
                pk.as_pem(private=False),
                parameters={"kid": pk.thumbprint(), "use": "sig", "alg": "RS256"},
            )
        )
    return joserfc.jwk.KeySet(pub_keys)  # type: ignore[arg-type]


def generate_private_key() -> schemas.ToolJsonWebKey:
    """Returns a newly generated private JSON Web Key"""
    pkey = joserfc.jwk.RSAKey.generate_key(key_size=2048, private=True)
    data = pkey.as_pem(private=True)
    return schemas.ToolJsonWebKey(
        kid=pkey.thumbprint(),
        data=schemas.make_secret(data.decode("ascii")),
        valid_to=None,
        valid_from=datetime.datetime.now(tz=datetime.UTC),
    )
