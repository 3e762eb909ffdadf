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

import unittest
from unittest.mock import patch

from ltiauth import settings
from ltiauth.lti import account_link
from ltiauth.lti.account_link import BindingState, PendingAccountLink


class PendingAccountLinkTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.pending = PendingAccountLink.start(
            "launch-1", "/resume", settings.PROVISIONING_PROMPT_NEW_EXISTING
        )

    def test_start(self) -> None:
        self.assertEqual(self.pending.state, BindingState.PENDING_LOGIN_CHOICE)
        self.assertTrue(self.pending.allows_new_account)
        self.assertTrue(self.pending.matches(self.pending.link_token))
        self.assertFalse(self.pending.matches("other"))
        self.assertFalse(self.pending.matches(None))

    def test_existing_only_mode(self) -> None:
        pending = PendingAccountLink.start(
            "launch-1", "/resume", settings.PROVISIONING_PROMPT_EXISTING_ONLY
        )
        self.assertFalse(pending.allows_new_account)

    def test_account_creation_disabled(self) -> None:
        with patch.object(settings, "PREVENT_ACCOUNT_CREATION", True):
            self.assertFalse(self.pending.allows_new_account)

    def test_rotated(self) -> None:
        rotated = self.pending.rotated()
        self.assertNotEqual(rotated.link_token, self.pending.link_token)
        self.assertFalse(rotated.matches(self.pending.link_token))
        self.assertEqual(rotated.launch_id, self.pending.launch_id)

    def test_session_round_trip(self) -> None:
        session: dict = {}
        moved = self.pending.moved_to(BindingState.PENDING_EMAIL_CONFIRMATION)
        account_link.save(session, moved)
        self.assertEqual(account_link.load(session), moved)
        account_link.clear(session)
        self.assertIsNone(account_link.load(session))

    def test_unreadable_state_discarded(self) -> None:
        session = {account_link.SESSION_KEY: {"launch_id": "x"}}
        self.assertIsNone(account_link.load(session))
        self.assertNotIn(account_link.SESSION_KEY, session)

    def test_consume_link_token(self) -> None:
        session: dict = {}
        account_link.save(session, self.pending)
        self.assertIsNone(account_link.consume_link_token(session, "wrong"))

        consumed = account_link.consume_link_token(session, self.pending.link_token)
        self.assertIsNotNone(consumed)
        self.assertNotEqual(consumed.link_token, self.pending.link_token)
        # the old token can not be used twice
        self.assertIsNone(
            account_link.consume_link_token(session, self.pending.link_token)
        )
