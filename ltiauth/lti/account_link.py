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
Account linking state

A privileged user launching without a bound account is asked whether to
create a new account or link an existing one. The progress of that choice
is kept in the session between requests:

    NO_BINDING -> PENDING_LOGIN_CHOICE -> PENDING_EMAIL_CONFIRMATION -> BOUND

Choosing a new account goes straight to ``BOUND``. Linking an existing
account is only bound once the emailed confirmation link is followed.
"""

import dataclasses
import enum
import hmac
import logging
import secrets
from collections.abc import MutableMapping
from typing import Any, Self

from .. import settings

logger = logging.getLogger(__name__)

SESSION_KEY = "lti_account_link"


class BindingState(enum.Enum):
    NO_BINDING = "no_binding"
    PENDING_LOGIN_CHOICE = "pending_login_choice"
    PENDING_EMAIL_CONFIRMATION = "pending_email_confirmation"
    BOUND = "bound"


@dataclasses.dataclass(frozen=True)
class PendingAccountLink:
    launch_id: str
    return_url: str
    link_token: str
    provisioning_mode: str
    state: BindingState = BindingState.PENDING_LOGIN_CHOICE

    @classmethod
    def start(cls, launch_id: str, return_url: str, provisioning_mode: str) -> Self:
        return cls(
            launch_id=launch_id,
            return_url=return_url,
            link_token=secrets.token_urlsafe(16),
            provisioning_mode=provisioning_mode,
        )

    @property
    def allows_new_account(self) -> bool:
        if settings.PREVENT_ACCOUNT_CREATION:
            return False
        return self.provisioning_mode != settings.PROVISIONING_PROMPT_EXISTING_ONLY

    def matches(self, link_token: str | None) -> bool:
        if not link_token:
            return False
        return hmac.compare_digest(self.link_token.encode(), link_token.encode())

    def rotated(self) -> Self:
        """Returns a copy with a fresh link token, invalidating the old one."""
        return dataclasses.replace(self, link_token=secrets.token_urlsafe(16))

    def moved_to(self, state: BindingState) -> Self:
        logger.info("account link [%s]: %s -> %s", self.launch_id, self.state, state)
        return dataclasses.replace(self, state=state)

    def to_session(self) -> dict[str, str]:
        return {
            "launch_id": self.launch_id,
            "return_url": self.return_url,
            "link_token": self.link_token,
            "provisioning_mode": self.provisioning_mode,
            "state": self.state.value,
        }

    @classmethod
    def from_session(cls, data: dict[str, str]) -> Self:
        return cls(
            launch_id=data["launch_id"],
            return_url=data["return_url"],
            link_token=data["link_token"],
            provisioning_mode=data["provisioning_mode"],
            state=BindingState(data["state"]),
        )


def load(session: MutableMapping[str, Any]) -> PendingAccountLink | None:
    if not (data := session.get(SESSION_KEY)):
        return None
    try:
        return PendingAccountLink.from_session(data)
    except (KeyError, ValueError, TypeError):
        logger.warning("discarding unreadable account link state")
        session.pop(SESSION_KEY, None)
        return None


def save(session: MutableMapping[str, Any], pending: PendingAccountLink) -> None:
    session[SESSION_KEY] = pending.to_session()


def clear(session: MutableMapping[str, Any]) -> None:
    session.pop(SESSION_KEY, None)


def consume_link_token(
    session: MutableMapping[str, Any], link_token: str | None
) -> PendingAccountLink | None:
    """Returns the pending link if ``link_token`` is its current token.

    The token is replaced on success, so a second form holding the same
    token can not complete the link.
    """
    pending = load(session)
    if pending is None or not pending.matches(link_token):
        return None
    pending = pending.rotated()
    save(session, pending)
    return pending
