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
Templating library for HTML Responses
"""

import html

from fastapi import Response

from . import schemas, settings


def _page(title: str, content: str, status_code: int = 200) -> Response:
    body = f"""\
    <!doctype html>
    <html lang="en">
    <head><title>{html.escape(settings.SITE_NAME)} - {html.escape(title)}</title></head>
    <body>
        <h1>{html.escape(title)}</h1>
        {content}
    </body>
    </html>
    """
    return Response(content=body, media_type="text/html", status_code=status_code)


def error_page(title: str, message: str, status_code: int = 400) -> Response:
    content = f"<p>{html.escape(message)}</p>"
    return _page(title, content, status_code)


def account_choice_page(
    action_url: str,
    link_token: str,
    *,
    allow_new: bool,
    logged_in_as: str | None = None,
) -> Response:
    existing_label = (
        f"Use my current account ({html.escape(logged_in_as)})"
        if logged_in_as
        else "Link to an existing account"
    )
    new_option = ""
    if allow_new:
        new_option = """\
            <p><label>
              <input type="radio" name="choice" value="new" checked>
              Create a new account
            </label></p>"""
    content = f"""\
        <p>This is the first time you have launched this tool from your
        learning platform. Choose how you want to sign in.</p>
        <form method="post" action="{html.escape(action_url)}">
            <input type="hidden" name="linktoken" value="{html.escape(link_token)}">
            {new_option}
            <p><label>
              <input type="radio" name="choice" value="existing"
                {"" if allow_new else "checked"}>
              {existing_label}
            </label></p>
            <button type="submit">Continue</button>
        </form>
    """
    return _page("Account setup", content)


def check_email_page(email: str, sent: bool) -> Response:
    if sent:
        content = f"""\
            <p>A confirmation link was sent to {html.escape(email)}.</p>
            <p>Follow the link within
            {settings.ACCOUNT_LINK_EXPIRY // 60} minutes to finish linking
            your account.</p>
        """
        return _page("Check your email", content)
    content = """\
        <p>We could not send the confirmation email. Please launch the tool
        from your learning platform again, or contact your administrator.</p>
    """
    return _page("Email not sent", content, 503)


def confirm_failed_page() -> Response:
    content = """\
        <p>This confirmation link has expired or is not valid. Please launch
        the tool from your learning platform again to request a new link.</p>
    """
    return _page("Link expired or invalid", content, 400)


def login_page(
    action_url: str,
    next_url: str = "",
    link_token: str = "",
    error: str | None = None,
) -> Response:
    message = f'<p role="alert">{html.escape(error)}</p>' if error else ""
    content = f"""\
        {message}
        <form method="post" action="{html.escape(action_url)}">
            <input type="hidden" name="next" value="{html.escape(next_url)}">
            <input type="hidden" name="linktoken" value="{html.escape(link_token)}">
            <p><label>Username <input type="text" name="username"></label></p>
            <p><label>Password <input type="password" name="password"></label></p>
            <button type="submit">Log in</button>
        </form>
    """
    return _page("Log in", content, 401 if error else 200)


def account_link_email(account: schemas.Account, link: str) -> tuple[str, str, str]:
    """Returns the subject, text and HTML bodies of a link confirmation."""
    site = settings.SITE_NAME
    minutes = settings.ACCOUNT_LINK_EXPIRY // 60
    subject = f"{site}: confirm account link"
    text = f"""\
Hi {account.firstname},

A request was made to link your {site} account "{account.username}" to
an account on an external learning platform.

To confirm, open this link within {minutes} minutes:

{link}

If you did not make this request you can ignore this message.
"""
    body_html = f"""\
<p>Hi {html.escape(account.firstname)},</p>
<p>A request was made to link your {html.escape(site)} account
"{html.escape(account.username)}" to an account on an external learning
platform.</p>
<p><a href="{html.escape(link)}">Confirm the account link</a> within
{minutes} minutes.</p>
<p>If you did not make this request you can ignore this message.</p>
"""
    return subject, text, body_html
