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
Authentication and sessions

Local accounts log in with a username and password. After a launch the
account id is kept in the signed session cookie together with a random
session id, which namespaces the launch cache. The session id survives a
login so a launch cached before the login can still be resumed.
"""

import logging
import secrets
from collections.abc import MutableMapping
from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status
from passlib.context import CryptContext

from . import db, schemas
from .lti import account_link

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

SESSION_ID_KEY = "sid"
ACCOUNT_ID_KEY = "account_id"
FORCE_EMBED_KEY = "force_embed"

Session = MutableMapping[str, Any]


def hash_password(password_plain: str) -> str:
    """Returns a hashed string suitable for storing in a database."""
    return pwd_context.hash(password_plain)


def verify_password(password_plain: str, password_hash: str) -> bool:
    """Returns True if the plain string matches the provided hash."""
    return pwd_context.verify(password_plain, password_hash)


async def authenticate(username: str, password: str) -> str | None:
    """Returns the account id if the credentials are valid."""
    if (found := await db.account_store.password_hash(username)) is None:
        logger.warning("login for unknown or passwordless user [%s]", username)
        # keep the timing of unknown users close to known ones
        pwd_context.dummy_verify()
        return None
    account_id, password_hash = found
    if not verify_password(password, password_hash):
        logger.warning("invalid password for [%s]", username)
        return None
    return account_id


def is_local_path(url: str) -> bool:
    """Returns True if ``url`` is a path on this site.

    Browsers read a leading backslash like a slash, so any backslash
    rules the url out.
    """
    return url.startswith("/") and not url.startswith("//") and "\\" not in url


def session_id(session: Session) -> str:
    """Returns the id of the session, creating it on first use."""
    if not (sid := session.get(SESSION_ID_KEY)):
        sid = secrets.token_urlsafe(24)
        session[SESSION_ID_KEY] = sid
    return sid  # type: ignore[no-any-return]


def current_account_id(session: Session) -> str | None:
    return session.get(ACCOUNT_ID_KEY)


def login(session: Session, account_id: str) -> None:
    if (previous := current_account_id(session)) and previous != account_id:
        logger.info("session switching account [%s] -> [%s]", previous, account_id)
    session_id(session)
    session[ACCOUNT_ID_KEY] = account_id


def logout(session: Session) -> None:
    for key in (ACCOUNT_ID_KEY, FORCE_EMBED_KEY, account_link.SESSION_KEY):
        session.pop(key, None)


async def req_account(request: Request) -> schemas.Account:
    """Dependency providing the logged-in ``Account``."""
    if account_id := current_account_id(request.session):
        if account := await db.account_store.find_user(account_id):
            return account
        logger.warning("session account [%s] no longer exists", account_id)
        logout(request.session)
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)


Account = Annotated[schemas.Account, Depends(req_account)]
