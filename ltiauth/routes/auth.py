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
Authentication routes

Local username and password login, used by privileged users linking
their platform identity to an existing account.
"""

import logging
import urllib.parse
from typing import Any

from fastapi import APIRouter, Form, Request, Response, status
from fastapi.responses import RedirectResponse

from .. import security, settings, templates
from ..lti import account_link

logger = logging.getLogger(__name__)

router = APIRouter()


def _safe_next(next_url: str) -> str:
    if security.is_local_path(next_url):
        return next_url
    return f"{settings.PATH_PREFIX}/"


@router.get("/login", include_in_schema=False)
async def login_page(
    request: Request,
    next: str = "",  # noqa: A002
    linktoken: str = "",
) -> Response:
    return templates.login_page(
        str(request.url_for("login_submit")), next_url=next, link_token=linktoken
    )


@router.post("/login", include_in_schema=False)
async def login_submit(
    request: Request,
    username: str = Form(...),
    password: str = Form(...),
    next: str = Form(""),  # noqa: A002
    linktoken: str = Form(""),
) -> Response:
    """Logs in a local account.

    A login started from the account choice page carries the pending link
    token. The token is single use, so a second, stale, login form still
    logs the user in but does not continue the account link.
    """
    if (account_id := await security.authenticate(username, password)) is None:
        return templates.login_page(
            str(request.url_for("login_submit")),
            next_url=next,
            link_token=linktoken,
            error="Invalid username or password",
        )

    security.login(request.session, account_id)
    logger.info("account [%s] logged in", account_id)

    target_url = _safe_next(next)
    if linktoken:
        pending = account_link.consume_link_token(request.session, linktoken)
        if pending is None:
            logger.warning("stale link token at login for [%s]", account_id)
            target_url = f"{settings.PATH_PREFIX}/"
        else:
            query = urllib.parse.urlencode({"linktoken": pending.link_token})
            target_url = f"{request.app.url_path_for('account_existing')}?{query}"
    return RedirectResponse(url=target_url, status_code=status.HTTP_303_SEE_OTHER)


@router.post("/logout", include_in_schema=False)
async def logout(request: Request) -> Response:
    security.logout(request.session)
    return RedirectResponse(
        url=str(request.url_for("login_page")),
        status_code=status.HTTP_303_SEE_OTHER,
    )


@router.get("/userinfo")
async def user_info(account: security.Account) -> dict[str, Any]:
    """Returns the logged-in account."""
    return account.model_dump(include={"id", "username", "firstname", "lastname"})
