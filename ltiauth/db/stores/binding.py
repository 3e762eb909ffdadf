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

import logging

import sqlalchemy as sa

from ... import schemas
from ..core import async_session
from ..models import LinkedLogin

logger = logging.getLogger(__name__)


class BindingStore:
    """Identity Binding Repository.

    Rows are keyed by the hashed issuer and subject. The caller does the
    hashing, this store never sees the raw platform identifiers.
    """

    # noinspection PyMethodMayBeStatic
    async def find(
        self, issuer_hash: str, subject_hash: str
    ) -> schemas.IdentityBinding | None:
        """Returns the binding for the pair, confirmed or not."""
        stmt = sa.select(LinkedLogin).where(
            LinkedLogin.issuer_hash == issuer_hash,
            LinkedLogin.subject_hash == subject_hash,
        )
        async with async_session() as session:
            result = await session.execute(stmt)
            if row := result.scalar():
                return schemas.IdentityBinding.model_validate(row)
        return None

    # noinspection PyMethodMayBeStatic
    async def add(self, binding: schemas.IdentityBinding) -> schemas.IdentityBinding:
        """Inserts a binding.

        A second binding for the same pair raises ``IntegrityError``.
        """
        async with async_session.begin() as session:
            row = LinkedLogin(
                account_id=binding.account_id,
                issuer_hash=binding.issuer_hash,
                subject_hash=binding.subject_hash,
                token=binding.token,
                token_expiry=binding.token_expiry,
                created_at=binding.created_at,
            )
            session.add(row)
            await session.flush()
            return schemas.IdentityBinding.model_validate(row)

    # noinspection PyMethodMayBeStatic
    async def replace_unconfirmed(
        self, binding: schemas.IdentityBinding
    ) -> schemas.IdentityBinding | None:
        """Stores an unconfirmed binding in place of any unconfirmed one.

        Returns None, leaving the table unchanged, if the pair is already
        bound to an account.
        """
        async with async_session.begin() as session:
            result = await session.execute(
                sa.select(LinkedLogin).where(
                    LinkedLogin.issuer_hash == binding.issuer_hash,
                    LinkedLogin.subject_hash == binding.subject_hash,
                )
            )
            if row := result.scalar():
                if row.token is None:
                    return None
                await session.delete(row)
                await session.flush()
            row = LinkedLogin(
                account_id=binding.account_id,
                issuer_hash=binding.issuer_hash,
                subject_hash=binding.subject_hash,
                token=binding.token,
                token_expiry=binding.token_expiry,
                created_at=binding.created_at,
            )
            session.add(row)
            await session.flush()
            return schemas.IdentityBinding.model_validate(row)

    # noinspection PyMethodMayBeStatic
    async def confirm(self, issuer_hash: str, subject_hash: str, token: str) -> bool:
        """Clears the token of a pending binding.

        The update only matches while the stored token is still ``token`` so
        a link can be used once.
        """
        stmt = (
            sa.update(LinkedLogin)
            .where(
                LinkedLogin.issuer_hash == issuer_hash,
                LinkedLogin.subject_hash == subject_hash,
                LinkedLogin.token == token,
            )
            .values(token=None, token_expiry=None)
        )
        async with async_session.begin() as session:
            result = await session.execute(stmt)
            return result.rowcount == 1

    # noinspection PyMethodMayBeStatic
    async def delete(self, issuer_hash: str, subject_hash: str) -> None:
        stmt = sa.delete(LinkedLogin).where(
            LinkedLogin.issuer_hash == issuer_hash,
            LinkedLogin.subject_hash == subject_hash,
        )
        async with async_session.begin() as session:
            await session.execute(stmt)

    # noinspection PyMethodMayBeStatic
    async def purge_expired(self, now: int) -> int:
        """Removes unconfirmed bindings whose token has expired."""
        stmt = sa.delete(LinkedLogin).where(
            LinkedLogin.token.is_not(None),
            LinkedLogin.token_expiry < now,
        )
        async with async_session.begin() as session:
            result = await session.execute(stmt)
            return result.rowcount
