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
from unittest.mock import AsyncMock, patch

import httpx

from ltiauth import schemas, services
from ltiauth.errors import LtiServiceError

MEMBERSHIPS_URL = "https://lms.example.edu/api/lti/courses/79639/names_and_roles"
LINEITEMS_URL = "https://lms.example.edu/api/lti/courses/79639/line_items"


class LtiServicesLinkHeaderTestCase(unittest.TestCase):
    def test_link_header_without_next(self) -> None:
        headers = {
            "Link": (
                "<https://lms.example.edu/api/lti/courses/79639/"
                'names_and_roles?page=1&per_page=50>; rel="current",'
                "<https://lms.example.edu/api/lti/courses/79639/"
                'names_and_roles?page=1&per_page=50>; rel="first",'
                "<https://lms.example.edu/api/lti/courses/79639/"
                'names_and_roles?page=1&per_page=50>; rel="last"'
            )
        }
        rv = services.next_page_link(headers)
        self.assertIsNone(rv)

    def test_link_header_next(self) -> None:
        headers = {
            "Link": (
                "<https://lms.example.edu/api/lti/courses/79639/"
                'names_and_roles?page=1&per_page=50>; rel="current",'
                "<https://lms.example.edu/api/lti/courses/79639/"
                'names_and_roles?page=2&per_page=50>; rel="next",'
                "<https://lms.example.edu/api/lti/courses/79639/"
                'names_and_roles?page=1&per_page=50>; rel="first",'
                "<https://lms.example.edu/api/lti/courses/79639/"
                'names_and_roles?page=3&per_page=50>; rel="last"'
            )
        }
        rv = services.next_page_link(headers)
        self.assertEqual(
            "https://lms.example.edu/api/lti/courses/79639/"
            "names_and_roles?page=2&per_page=50",
            rv,
        )


class NamesRoleServiceTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.registration = schemas.ApplicationRegistration(
            id="reg-1",
            name="Example LMS",
            platform_issuer="https://lms.example.edu",
            client_id="client-1",
            auth_request_url="https://lms.example.edu/auth",
            jwks_url="https://lms.example.edu/jwks",
            access_token_url="https://lms.example.edu/token",
        )

    def _response(self, url: str, data: dict, headers: dict | None = None):
        return httpx.Response(
            200, json=data, headers=headers, request=httpx.Request("GET", url)
        )

    @patch("ltiauth.services.LtiServicesClient.authorize_header")
    @patch("ltiauth.aio.http_client")
    async def test_all_members_follows_next_page(self, client_mock, auth_mock):
        auth_mock.return_value = {"Authorization": "Bearer t"}
        page_2 = f"{MEMBERSHIPS_URL}?page=2"
        client_mock.get = AsyncMock(
            side_effect=[
                self._response(
                    MEMBERSHIPS_URL,
                    {"members": [{"user_id": "u1", "roles": []}, {"status": "x"}]},
                    {"Link": f'<{page_2}>; rel="next"'},
                ),
                self._response(page_2, {"members": [{"user_id": "u2"}]}),
            ]
        )
        nrps = services.NamesRoleService(self.registration, MEMBERSHIPS_URL)
        members = [m.user_id async for m in nrps.all_members()]
        self.assertListEqual(members, ["u1", "u2"])
        self.assertEqual(client_mock.get.call_args.kwargs["url"], page_2)
        self.assertEqual(
            client_mock.get.call_args.kwargs["headers"]["Accept"],
            services.NRPS_MEDIA_TYPE,
        )

    @patch("ltiauth.services.LtiServicesClient.authorize_header")
    @patch("ltiauth.aio.http_client")
    async def test_http_error_raises_service_error(self, client_mock, auth_mock):
        auth_mock.return_value = {"Authorization": "Bearer t"}
        client_mock.get = AsyncMock(
            return_value=httpx.Response(
                403,
                json={"error": "forbidden"},
                request=httpx.Request("GET", MEMBERSHIPS_URL),
            )
        )
        nrps = services.NamesRoleService(self.registration, MEMBERSHIPS_URL)
        with self.assertRaises(LtiServiceError) as ctx:
            await nrps.members()
        self.assertEqual(ctx.exception.status_code, 403)


class AssignmentGradeServiceTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.registration = schemas.ApplicationRegistration(
            id="reg-1",
            name="Example LMS",
            platform_issuer="https://lms.example.edu",
            client_id="client-1",
            auth_request_url="https://lms.example.edu/auth",
            jwks_url="https://lms.example.edu/jwks",
            access_token_url="https://lms.example.edu/token",
        )
        self.ags = services.AssignmentGradeService(
            self.registration,
            LINEITEMS_URL,
            None,
            ["https://purl.imsglobal.org/spec/lti-ags/scope/score"],
        )

    def _response(self, method: str, url: str, data, headers: dict | None = None):
        return httpx.Response(
            200, json=data, headers=headers, request=httpx.Request(method, url)
        )

    @patch("ltiauth.services.LtiServicesClient.authorize_header")
    @patch("ltiauth.aio.http_client")
    async def test_lineitem_found_on_later_page(self, client_mock, auth_mock):
        auth_mock.return_value = {"Authorization": "Bearer t"}
        page_2 = f"{LINEITEMS_URL}?page=2"
        client_mock.get = AsyncMock(
            side_effect=[
                self._response(
                    "GET",
                    LINEITEMS_URL,
                    [{"id": f"{LINEITEMS_URL}/1", "label": "Quiz", "scoreMaximum": 5}],
                    {"Link": f'<{page_2}>; rel="next"'},
                ),
                self._response(
                    "GET",
                    page_2,
                    [
                        {
                            "id": f"{LINEITEMS_URL}/2",
                            "label": "Algebra",
                            "scoreMaximum": 100,
                        }
                    ],
                ),
            ]
        )
        item = await self.ags.lineitem("Algebra")
        self.assertEqual(item.id, f"{LINEITEMS_URL}/2")
        self.assertEqual(
            client_mock.get.call_args.kwargs["headers"]["Accept"],
            services.AssignmentGradeService.CONTENT_TYPE_LIST,
        )

    @patch("ltiauth.services.LtiServicesClient.authorize_header")
    @patch("ltiauth.aio.http_client")
    async def test_lineitem_not_found(self, client_mock, auth_mock):
        auth_mock.return_value = {"Authorization": "Bearer t"}
        client_mock.get = AsyncMock(
            return_value=self._response("GET", LINEITEMS_URL, [])
        )
        self.assertIsNone(await self.ags.lineitem("Algebra"))

    @patch("ltiauth.services.LtiServicesClient.authorize_header")
    @patch("ltiauth.aio.http_client")
    async def test_add_lineitem(self, client_mock, auth_mock):
        auth_mock.return_value = {"Authorization": "Bearer t"}
        client_mock.post = AsyncMock(
            return_value=self._response(
                "POST",
                LINEITEMS_URL,
                {"id": f"{LINEITEMS_URL}/3", "label": "Algebra", "scoreMaximum": 100},
            )
        )
        item = schemas.LineItem.model_validate(
            {"label": "Algebra", "scoreMaximum": 100}
        )
        created = await self.ags.add_lineitem(item)
        self.assertEqual(created.id, f"{LINEITEMS_URL}/3")
        kwargs = client_mock.post.call_args.kwargs
        self.assertEqual(kwargs["url"], LINEITEMS_URL)
        self.assertNotIn('"id"', kwargs["content"])
        self.assertIn('"scoreMaximum"', kwargs["content"])

    @patch("ltiauth.services.LtiServicesClient.authorize_header")
    @patch("ltiauth.aio.http_client")
    async def test_add_score(self, client_mock, auth_mock):
        auth_mock.return_value = {"Authorization": "Bearer t"}
        client_mock.post = AsyncMock(
            return_value=self._response("POST", f"{LINEITEMS_URL}/3/scores", {})
        )
        item = schemas.LineItem.model_validate(
            {"id": f"{LINEITEMS_URL}/3/", "label": "Algebra", "scoreMaximum": 100}
        )
        score = schemas.Score.model_validate(
            {"scoreGiven": 80, "scoreMaximum": 100, "userId": "user-1"}
        )
        await self.ags.add_score(item, score)
        kwargs = client_mock.post.call_args.kwargs
        self.assertEqual(kwargs["url"], f"{LINEITEMS_URL}/3/scores")
        self.assertEqual(
            kwargs["headers"]["Content-Type"],
            services.AssignmentGradeService.CONTENT_TYPE_SCORE,
        )
        self.assertIn('"userId":"user-1"', kwargs["content"])
        self.assertNotIn("comment", kwargs["content"])

    async def test_add_score_needs_lineitem_id(self) -> None:
        item = schemas.LineItem.model_validate({"label": "x", "scoreMaximum": 1})
        score = schemas.Score.model_validate(
            {"scoreGiven": 1, "scoreMaximum": 1, "userId": "user-1"}
        )
        with self.assertRaises(LtiServiceError):
            await self.ags.add_score(item, score)

    async def test_no_lineitems_url(self) -> None:
        ags = services.AssignmentGradeService(
            self.registration, None, f"{LINEITEMS_URL}/3", []
        )
        with self.assertRaises(LtiServiceError):
            await ags.lineitem("Algebra")
