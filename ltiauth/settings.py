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
Application Settings and Configuration

Application-wide configuration settings that are read in from the Environment.
"""

import contextvars
import dataclasses
import logging
import secrets
from pathlib import Path
from typing import Any

import shortuuid
from starlette.config import Config

BASE_PATH = Path(__file__).parent.parent

VALID_ENVIRONMENTS = ("local", "sandbox", "dev", "prod")

PROVISIONING_AUTO_ONLY = "auto_only"
PROVISIONING_PROMPT_NEW_EXISTING = "prompt_new_existing"
PROVISIONING_PROMPT_EXISTING_ONLY = "prompt_existing_only"
VALID_PROVISIONING_MODES = (
    PROVISIONING_AUTO_ONLY,
    PROVISIONING_PROMPT_NEW_EXISTING,
    PROVISIONING_PROMPT_EXISTING_ONLY,
)

_cfg = Config(env_file=BASE_PATH / ".env")


@dataclasses.dataclass(frozen=True)
class RequestContext:
    """Context information to pass from routes to other services."""

    request_id: str
    client_ip: str | None


CTX_REQUEST: contextvars.ContextVar[RequestContext] = contextvars.ContextVar(
    "RequestContext",
    default=RequestContext(  # noqa: B039
        request_id=shortuuid.uuid(),
        client_ip=None,
    ),
)

DEBUG = _cfg("LTIAUTH_DEBUG", cast=bool, default=False)
DEVMODE = _cfg("LTIAUTH_DEVMODE", cast=bool, default=False)
ENV = _cfg("LTIAUTH_ENV", default="local")
SECRET_KEY = _cfg("LTIAUTH_SECRET_KEY", default="")
PORT = _cfg("LTIAUTH_PORT", cast=int, default=8443)
PATH_PREFIX = _cfg("LTIAUTH_PATH_PREFIX", default="/api")
FORWARDED_ALLOW_CIDRS = _cfg(
    "LTIAUTH_FORWARDED_ALLOW_CIDRS", default="172.16.0.0/12,10.20.80.0/22"
)
SITE_NAME = _cfg("LTIAUTH_SITE_NAME", default="SCOOL")

DB_URL = _cfg(
    "LTIAUTH_DB_URL",
    default=f"sqlite+aiosqlite:///{BASE_PATH}/ltiauth_db.sqlite",
)

# The launch cache lives as long as the browser session that created it.
SESSION_MAX_AGE = _cfg("LTIAUTH_SESSION_MAX_AGE", cast=int, default=60 * 60 * 8)
SESSION_COOKIE = _cfg("LTIAUTH_SESSION_COOKIE", default="ltiauth_session")

LTI_NONCE_TTL = _cfg("LTIAUTH_LTI_NONCE_TTL", cast=int, default=600)
LTI_CLOCK_LEEWAY = _cfg("LTIAUTH_LTI_CLOCK_LEEWAY", cast=int, default=5)
LTI_MAX_TOKEN_AGE = _cfg("LTIAUTH_LTI_MAX_TOKEN_AGE", cast=int, default=600)
JWKS_CACHE_TTL = _cfg("LTIAUTH_JWKS_CACHE_TTL", cast=int, default=86400)
JWKS_FETCH_TIMEOUT = _cfg("LTIAUTH_JWKS_FETCH_TIMEOUT", cast=float, default=5.0)

ACCOUNT_LINK_EXPIRY = _cfg("LTIAUTH_ACCOUNT_LINK_EXPIRY", cast=int, default=1800)
PREVENT_ACCOUNT_CREATION = _cfg(
    "LTIAUTH_PREVENT_ACCOUNT_CREATION", cast=bool, default=False
)
PROVISIONING_MODE_INSTRUCTOR = _cfg(
    "LTIAUTH_PROVISIONING_MODE_INSTRUCTOR",
    default=PROVISIONING_PROMPT_NEW_EXISTING,
)

SMTP_HOST = _cfg("LTIAUTH_SMTP_HOST", default="")
SMTP_PORT = _cfg("LTIAUTH_SMTP_PORT", cast=int, default=587)
SMTP_USERNAME = _cfg("LTIAUTH_SMTP_USERNAME", default="")
SMTP_PASSWORD = _cfg("LTIAUTH_SMTP_PASSWORD", default="")
SMTP_USE_TLS = _cfg("LTIAUTH_SMTP_USE_TLS", cast=bool, default=True)
MAIL_FROM = _cfg("LTIAUTH_MAIL_FROM", default="noreply@example.com")

# grades posted to the scores endpoint must carry this key, empty refuses all
GRADES_API_KEY = _cfg("LTIAUTH_GRADES_API_KEY", default="")

LOG_LEVEL_ROOT = _cfg("LOG_LEVEL_ROOT", default="INFO" if DEBUG else "WARNING")
LOG_LEVEL_UVICORN = _cfg("LOG_LEVEL_UVICORN", default="DEBUG" if DEBUG else "INFO")
LOG_LEVEL_APP = _cfg("LOG_LEVEL_APP", default="DEBUG" if DEBUG else "INFO")

_old_log_factory = logging.getLogRecordFactory()


def _new_log_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _old_log_factory(*args, **kwargs)
    record.request_id = CTX_REQUEST.get().request_id
    return record


logging.setLogRecordFactory(_new_log_factory)
logging.basicConfig(
    format="%(asctime)s[%(levelname)s][%(request_id)s]%(name)s: %(message)s",
    level=LOG_LEVEL_ROOT,
)
logging.getLogger("uvicorn").setLevel(LOG_LEVEL_UVICORN)
logging.getLogger(__package__).setLevel(LOG_LEVEL_APP)
# avoid logging a Traceback from passlib failing to read the bcrypt version
logging.getLogger("passlib.handlers.bcrypt").setLevel(logging.ERROR)


def verify_environment(value: str) -> None:
    """Raises a ``ValueError`` if the provided environment is not valid."""
    if value not in VALID_ENVIRONMENTS:
        msg = f"Invalid env [{value}], must be one of: {' '.join(VALID_ENVIRONMENTS)}"
        raise ValueError(msg)

    if DB_URL.startswith("sqlite") and value != "local":
        msg = "Sqlite DB_URL should only be used in local environments"
        raise ValueError(msg)


def verify_provisioning_mode(value: str) -> None:
    """Raises a ``ValueError`` if the provisioning mode is not known."""
    if value not in VALID_PROVISIONING_MODES:
        msg = (
            f"Invalid provisioning mode [{value}], "
            f"must be one of: {' '.join(VALID_PROVISIONING_MODES)}"
        )
        raise ValueError(msg)


def is_production() -> bool:
    """Returns True if the environment is set to Production mode."""
    return ENV == "prod"


def is_local() -> bool:
    """Returns True if the environment is set to Local model."""
    return ENV == "local"


verify_environment(ENV)
verify_provisioning_mode(PROVISIONING_MODE_INSTRUCTOR)

if not SECRET_KEY:
    if not is_local():
        raise RuntimeError("LTIAUTH_SECRET_KEY must be set")  # noqa: TRY003
    SECRET_KEY = secrets.token_urlsafe(32)
