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
Data Storage

Data storage is broken up into multiple stores that each handle
persisting a given set of data. All database operations are handled
by these classes as well as the translation of input/output to/from
database models and schema classes.
"""

from .account import AccountStore as AccountStore
from .binding import BindingStore as BindingStore
from .cache import CacheStore as CacheStore
from .context import ContextStore as ContextStore
from .deployment import DeploymentStore as DeploymentStore
from .enrolment import EnrolmentStore as EnrolmentStore
from .keys import ToolKeyStore as ToolKeyStore
from .legacy import LegacyStore as LegacyStore
from .registration import RegistrationStore as RegistrationStore
from .resource import ResourceStore as ResourceStore
from .resource_link import ResourceLinkStore as ResourceLinkStore
from .user import LtiUserStore as LtiUserStore
