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
LTI 1.3 Endpoint

This route handles the OIDC Login Initiation request from the Platform,
the Launch Request, the account link pages a privileged user without
a bound account goes through and the scores endpoint that records grades
for the grade sync.

see https://www.imsglobal.org/spec/lti/v1p3
"""

import hmac
import logging
import time
import urllib.parse
from typing import Annotated

import shortuuid
from fastapi import APIRouter, Form, Header, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse

from .. import db, errors, schemas, security, settings, templates
from ..lti import account_link, verifier
from ..lti.identity import IdentityResolver
from ..lti.launch import (
    AccountChoiceRequired,
    ConfirmationSent,
    LaunchOrchestrator,
    LaunchOutcome,
    LoginRequired,
)

logger = logging.getLogger(__name__)

router = APIRouter()

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store",
    "Pragma": "no-cache",
}

STATE_COOKIE_PREFIX = "lti1p3-state-"


def orchestrator(request: Request) -> LaunchOrchestrator:
    def resume_url(launch_id: str) -> str:
        return str(request.app.url_path_for("launch_resume", launch_id=launch_id))

    return LaunchOrchestrator(request.session, resume_url)


def outcome_response(request: Request, outcome: LaunchOutcome) -> Response:
    if isinstance(outcome, AccountChoiceRequired):
        target_url = request.url_for("account_choice")
    else:
        target_url = outcome.result.redirect_url
    logger.info("launch redirecting to %s", target_url)
    return RedirectResponse(
        url=str(target_url),
        headers=NO_CACHE_HEADERS,
        status_code=status.HTTP_303_SEE_OTHER,
    )


def same_endpoint(url: str, expected: str) -> bool:
    """Returns True if both URLs address the same endpoint, ignoring the query."""
    a, b = urllib.parse.urlsplit(url), urllib.parse.urlsplit(expected)
    return (a.scheme, a.netloc, a.path.rstrip("/")) == (
        b.scheme,
        b.netloc,
        b.path.rstrip("/"),
    )


@router.get("/login_initiations", include_in_schema=False)
async def login_initiations_query(
    request: Request,
    iss: str,
    login_hint: str,
    target_link_uri: str,
    lti_message_hint: str | None = None,
    lti_deployment_id: str | None = None,
    client_id: str | None = None,
) -> Response:
    """LTI OIDC Login Initiation.

    Provided in order to support either GET or POST requests. This delegates
    to the POST endpoint.
    """
    return await login_initiations_form(
        request,
        iss,
        login_hint,
        target_link_uri,
        lti_message_hint,
        lti_deployment_id,
        client_id,
    )


@router.post("/login_initiations", include_in_schema=False)
async def login_initiations_form(
    request: Request,
    iss: str = Form(...),
    login_hint: str = Form(...),
    target_link_uri: str = Form(...),
    lti_message_hint: str | None = Form(None),
    lti_deployment_id: str | None = Form(None),
    client_id: str | None = Form(None),
) -> Response:
    """LTI OIDC Login Initiation.

    LTI 1.3 uses a modified version of OIDC 3rd Party Login Initiation. The
    registration is found from the issuer and, when the platform sends one,
    the client id.
    """
    # used as a unique transaction key to associate the launch with the
    # user-agent (browser) and in log messages
    state = settings.CTX_REQUEST.get().request_id

    logger.info(
        "LTI Login Init: iss=%s, login_hint=%s, target_link_uri=%s, "
        "lti_message_hint=%s, lti_deployment_id=%s, client_id=%s",
        iss,
        login_hint,
        target_link_uri,
        lti_message_hint,
        lti_deployment_id,
        client_id,
    )

    registration = await db.registration_store.find_one(iss, client_id)
    if registration is None or registration.id is None:
        logger.error("no registration for issuer [%s] client [%s]", iss, client_id)
        raise errors.UnknownIssuer(iss)

    expect_target_uri = str(request.url_for("launch_form"))
    if not same_endpoint(target_link_uri, expect_target_uri):
        logger.error(
            "request target_link_uri [%s] does not match [%s]",
            target_link_uri,
            expect_target_uri,
        )
        content = {
            "error": "invalid_request_object",
            "error_description": "Invalid target_link_uri",
            "error_state": state,
        }
        return JSONResponse(content=content, status_code=status.HTTP_400_BAD_REQUEST)

    nonce = shortuuid.uuid()  # prevent replay attacks
    await verifier.remember_nonce(nonce, registration.id)
    query_string = {
        # only supported type is id_token
        "response_type": "id_token",
        # the url registered with the platform
        "redirect_uri": target_link_uri,
        # since the id_token can be large we ask that it be sent in a POST
        "response_mode": "form_post",
        "client_id": registration.client_id,
        "scope": "openid",
        "state": state,
        "nonce": nonce,
        # the launch is initiated from the platform where the user is
        # already authenticated
        "prompt": "none",
        "login_hint": login_hint,
    }
    if lti_message_hint:
        query_string["lti_message_hint"] = lti_message_hint

    encoded_query_string = urllib.parse.urlencode(query_string)
    target_url = urllib.parse.urljoin(
        str(registration.auth_request_url), "?" + encoded_query_string
    )

    response = RedirectResponse(
        url=target_url,
        headers={
            **NO_CACHE_HEADERS,
            "X-Frame-Options": "DENY",
        },
        status_code=status.HTTP_302_FOUND,
    )
    response.set_cookie(
        STATE_COOKIE_PREFIX + registration.id,
        state,
        max_age=settings.LTI_NONCE_TTL,
        secure=True,
        httponly=True,
        samesite="none",
    )

    logger.info("redirecting to %s", target_url)
    return response


@router.get("/launches", include_in_schema=False)
async def launch_query(
    request: Request,
    state: str,
    id_token: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
) -> Response:
    """LTI Launch endpoint.

    This route is provided for compatibility only. Launch requests SHOULD
    normally be a POST request since the IDToken value can be quite large.
    """
    return await launch_form(request, state, id_token, error, error_description)


@router.post("/launches", include_in_schema=False)
async def launch_form(
    request: Request,
    state: str = Form(...),
    id_token: str | None = Form(None),
    error: str | None = Form(None),
    error_description: str | None = Form(None),
) -> Response:
    """LTI Launch endpoint.

    The platform returns the user-agent here, with the signed id_token,
    after the OIDC login initiation.
    """
    logger.info("LTI Launch: state [%s]", state)

    if id_token is None:
        logger.error(
            "missing IDToken: error code=[%s], description=[%s]",
            error,
            error_description,
        )
        content = {
            "error": error,
            "error_description": error_description,
            "error_state": state,
        }
        return JSONResponse(content=content, status_code=status.HTTP_403_FORBIDDEN)

    message = await verifier.verify(id_token)

    # Match up the state provided in the OIDC login initiation with the
    # state stored in a cookie. Some platforms open the launch in a new
    # window without the cookie, so a mismatch is only logged.
    registration = await db.registration_store.find_one(
        message.issuer, message.client_id
    )
    state_cookie_key = STATE_COOKIE_PREFIX + (registration.id if registration else "")
    if (state_cookie_val := request.cookies.get(state_cookie_key)) != state:
        logger.error("state [%s] does not match Cookie [%s]", state, state_cookie_val)

    outcome = await orchestrator(request).launch(message)
    response = outcome_response(request, outcome)
    response.delete_cookie(state_cookie_key)
    return response


@router.get("/launches/{launch_id}", include_in_schema=False)
async def launch_resume(request: Request, launch_id: str) -> Response:
    """Resumes a launch cached in this session."""
    outcome = await orchestrator(request).resume(launch_id)
    return outcome_response(request, outcome)


@router.get("/account", include_in_schema=False)
async def account_choice(request: Request) -> Response:
    """Asks a privileged user how to sign in for a pending launch."""
    if (pending := account_link.load(request.session)) is None:
        raise errors.LaunchNotFound("no account link in progress")
    logged_in_as = None
    if account_id := security.current_account_id(request.session):
        if account := await db.account_store.find_user(account_id):
            logged_in_as = account.username
    return templates.account_choice_page(
        str(request.url_for("account_choice_form")),
        pending.link_token,
        allow_new=pending.allows_new_account,
        logged_in_as=logged_in_as,
    )


@router.post("/account", include_in_schema=False)
async def account_choice_form(
    request: Request,
    choice: str = Form(...),
    linktoken: str = Form(""),
) -> Response:
    orch = orchestrator(request)
    if choice == "new":
        return outcome_response(request, await orch.choose_new_account(linktoken))
    if choice == "existing":
        return await link_existing_account(request, orch, linktoken)
    return templates.error_page("Account setup", f"Unknown choice: {choice}")


@router.get("/account/existing", include_in_schema=False)
async def account_existing(request: Request, linktoken: str = "") -> Response:
    """Return point after a local login started from the account choice page."""
    return await link_existing_account(request, orchestrator(request), linktoken)


async def link_existing_account(
    request: Request, orch: LaunchOrchestrator, linktoken: str
) -> Response:
    outcome = await orch.choose_existing_account(
        linktoken, confirm_url=str(request.url_for("confirm_link"))
    )
    if isinstance(outcome, LoginRequired):
        query = urllib.parse.urlencode(
            {
                "next": request.app.url_path_for("account_existing"),
                "linktoken": outcome.pending.link_token,
            }
        )
        return RedirectResponse(
            url=f"{request.url_for('login_page')}?{query}",
            status_code=status.HTTP_303_SEE_OTHER,
        )
    assert isinstance(outcome, ConfirmationSent)  # noqa: S101
    return templates.check_email_page(outcome.email, outcome.sent)


@router.get("/confirm-link", include_in_schema=False)
async def confirm_link(
    token: str = "",
    iss: str = "",
    sub: str = "",
    userid: str = "",
    returnurl: str = "",
) -> Response:
    """Confirms a pending account link from the emailed URL.

    The link is bound to the account named by ``userid``, whoever follows
    it, and can be used once.
    """
    if not (token and iss and sub and userid):
        return templates.confirm_failed_page()
    resolver = IdentityResolver()
    if not await resolver.confirm_user_binding(iss, sub, userid, token):
        return templates.confirm_failed_page()

    target_url = returnurl
    if not security.is_local_path(returnurl):
        target_url = f"{settings.PATH_PREFIX}/"
    return RedirectResponse(url=target_url, status_code=status.HTTP_303_SEE_OTHER)


@router.post("/scores", status_code=status.HTTP_204_NO_CONTENT)
async def record_grade(
    grade: schemas.GradeReport, x_api_key: Annotated[str, Header()] = ""
) -> None:
    """Records the grade of an enrolled account.

    Grades are sent on to the platform by the next ``sync-grades`` run.
    """
    expected = settings.GRADES_API_KEY
    if not expected or not hmac.compare_digest(x_api_key, expected):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)

    logger.debug("recording grade: %r", grade)
    if not await db.enrolment_store.record_grade(
        grade.account_id, grade.resource_id, grade.grade, int(time.time())
    ):
        msg = f"[{grade.account_id}] is not enrolled in [{grade.resource_id}]"
        logger.warning(msg)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=msg)
