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
LTI Launch Database

This package defines the models and repositories (stores) used to store data
for this application.
"""

from . import models, stores
from .core import IntegrityError, async_session, engine, new_uuid

account_store = stores.AccountStore()
binding_store = stores.BindingStore()
cache_store = stores.CacheStore()
context_store = stores.ContextStore()
deployment_store = stores.DeploymentStore()
enrolment_store = stores.EnrolmentStore()
key_store = stores.ToolKeyStore()
legacy_store = stores.LegacyStore(account_store)
registration_store = stores.RegistrationStore()
resource_store = stores.ResourceStore()
resource_link_store = stores.ResourceLinkStore()
user_store = stores.LtiUserStore()


async def create_tables() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)


async def drop_tables() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.drop_all)


__all__ = [
    "IntegrityError",
    "account_store",
    "async_session",
    "binding_store",
    "cache_store",
    "context_store",
    "create_tables",
    "deployment_store",
    "drop_tables",
    "engine",
    "enrolment_store",
    "key_store",
    "legacy_store",
    "new_uuid",
    "registration_store",
    "resource_link_store",
    "resource_store",
    "user_store",
]
