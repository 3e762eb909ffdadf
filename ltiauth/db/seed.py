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
Database seeding

Used to seed a newly created database with data from a JSON file:

    {
      "registrations": [
        {"name": ..., "platform_issuer": ..., "client_id": ...,
         "auth_request_url": ..., "jwks_url": ..., "access_token_url": ...,
         "deployments": [{"name": ..., "deployment_id": ...}]}
      ],
      "resources": [{"id": ..., "name": ..., "course_id": ...}],
      "accounts": [{"username": ..., "password": ..., "firstname": ...,
                    "lastname": ..., "email": ...}],
      "legacy_consumers": [{"consumer_key": ..., "secrets": [...]}]
    }

Existing records are left alone, so seeding twice is harmless.
"""

import json
import logging
from pathlib import Path
from typing import Any

from .. import keys, schemas, security
from . import (
    IntegrityError,
    account_store,
    create_tables,
    deployment_store,
    key_store,
    legacy_store,
    registration_store,
    resource_store,
)

logger = logging.getLogger(__name__)


async def init_registrations(data: dict[str, Any]) -> None:
    for entry in data.get("registrations", []):
        entry = dict(entry)
        deployments = entry.pop("deployments", [])
        registration = await registration_store.find_one(
            entry["platform_issuer"], entry["client_id"]
        )
        if registration is None:
            registration = await registration_store.save(
                schemas.ApplicationRegistration.model_validate(entry)
            )
            logger.info("added registration %s", registration.name)
        assert registration.id is not None  # noqa: S101
        for dep in deployments:
            found = await deployment_store.find_by_registration(
                registration.id, dep["deployment_id"]
            )
            if found is not None:
                continue
            deployment = registration.add_tool_deployment(
                dep.get("name", dep["deployment_id"]), dep["deployment_id"]
            )
            if key := dep.get("legacy_consumer_key"):
                deployment = deployment.with_legacy_consumer_key(key)
            await deployment_store.save(deployment)


async def init_resources(data: dict[str, Any]) -> None:
    for entry in data.get("resources", []):
        await resource_store.save(schemas.PublishedResource.model_validate(entry))


async def init_accounts(data: dict[str, Any]) -> None:
    for entry in data.get("accounts", []):
        entry = dict(entry)
        password = entry.pop("password", None)
        if await account_store.find_user_by_username(entry["username"]):
            logger.info("account %s exists, skipping", entry["username"])
            continue
        try:
            await account_store.create_user(
                schemas.Account.model_validate(entry),
                security.hash_password(password) if password else None,
            )
        except IntegrityError as exc:
            logger.warning("account %s not added: %r", entry["username"], exc)


async def init_legacy_consumers(data: dict[str, Any]) -> None:
    for entry in data.get("legacy_consumers", []):
        for secret in entry.get("secrets", []):
            await legacy_store.add_secret(entry["consumer_key"], secret)


async def init_tool_keys() -> None:
    if await key_store.json_web_keys():
        logger.info("tool keys exist, skipping")
        return
    await key_store.add(keys.generate_private_key())


async def init_db(data: dict[str, Any]) -> None:
    await create_tables()
    await init_registrations(data)
    await init_resources(data)
    await init_accounts(data)
    await init_legacy_consumers(data)
    await init_tool_keys()


async def run(seed_file: Path) -> None:
    logger.warning("Using seed file %s", seed_file)
    with seed_file.open(mode="r", encoding="utf-8") as f:
        data = json.load(f)
    await init_db(data)
