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
LTI role classification

see https://www.imsglobal.org/spec/lti/v1p3#role-vocabularies
"""

import enum
from collections.abc import Iterable

ADMIN_ROLES = frozenset(
    {
        "http://purl.imsglobal.org/vocab/lis/v2/institution/person#Administrator",
        "http://purl.imsglobal.org/vocab/lis/v2/system/person#Administrator",
    }
)

STAFF_ROLES = frozenset(
    {
        "http://purl.imsglobal.org/vocab/lis/v2/membership#ContentDeveloper",
        "http://purl.imsglobal.org/vocab/lis/v2/membership#Instructor",
        "http://purl.imsglobal.org/vocab/lis/v2/membership/Instructor#TeachingAssistant",
        # deprecated simple names
        "ContentDeveloper",
        "Instructor",
        "Instructor#TeachingAssistant",
    }
)


class Role(enum.Enum):
    ADMIN = "admin"
    STAFF = "staff"
    LEARNER = "learner"

    @property
    def is_privileged(self) -> bool:
        return self is not Role.LEARNER


def classify(roles: Iterable[str]) -> Role:
    """Returns the most privileged role found in the ``roles`` claim."""
    found = set(roles)
    if found & ADMIN_ROLES:
        return Role.ADMIN
    if found & STAFF_ROLES:
        return Role.STAFF
    return Role.LEARNER
