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
LTI launch errors

Typed failures raised by the verifier, migration validator, identity
resolver and repositories. Only the web layer turns these into responses.
"""


class LtiError(Exception):
    """Base class for all launch and identity failures."""

    code: str = "LTI_ERROR"
    status_code: int = 400
    title: str = "Launch failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.code
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r})"


# Configuration errors, not retryable without an administrator.


class ConfigurationError(LtiError):
    code = "CONFIGURATION_ERROR"
    title = "Tool configuration error"


class UnknownIssuer(ConfigurationError):
    code = "UNKNOWN_ISSUER"


class InvalidRegistration(ConfigurationError):
    code = "INVALID_REGISTRATION"


class InvalidDeployment(ConfigurationError):
    code = "INVALID_DEPLOYMENT"


class AccountCreationDisabled(ConfigurationError):
    code = "ACCOUNT_CREATION_DISABLED"
    status_code = 403


# Validation errors, the launch must be started again from the platform.


class ValidationError(LtiError):
    code = "VALIDATION_ERROR"
    status_code = 401
    title = "Launch could not be verified"


class InvalidToken(ValidationError):
    code = "INVALID_TOKEN"


class InvalidSignature(InvalidToken):
    code = "INVALID_SIGNATURE"


class ExpiredToken(InvalidToken):
    code = "EXPIRED_TOKEN"


class NonceReplay(InvalidToken):
    code = "NONCE_REPLAY"


class AudienceMismatch(InvalidToken):
    code = "AUDIENCE_MISMATCH"


class MissingSignature(ValidationError):
    code = "MISSING_SIGNATURE"


class MissingConsumerKey(ValidationError):
    code = "MISSING_CONSUMER_KEY"


# Not found errors


class NotFoundError(LtiError):
    code = "NOT_FOUND"
    status_code = 404
    title = "Resource not found"


class MissingId(NotFoundError):
    code = "MISSING_ID"
    status_code = 400


class InvalidId(NotFoundError):
    code = "INVALID_ID"


class LaunchNotFound(NotFoundError):
    code = "LAUNCH_NOT_FOUND"
    title = "Launch expired"


class UnsupportedMessageType(LtiError):
    code = "UNSUPPORTED_MESSAGE_TYPE"
    status_code = 501
    title = "Launch type not supported"


class LtiServiceError(LtiError):
    """Failure calling an LTI Advantage service on the platform."""

    code = "SERVICE_ERROR"
    title = "Platform service error"

    def __init__(self, message: str | object, status_code: int = 500) -> None:
        super().__init__(str(message))
        self.status_code = status_code
