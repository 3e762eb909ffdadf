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
Identity Resolver

Maps a platform identity, the ``{iss, sub}`` pair of a launch or an NRPS
member, to exactly one local account. Lookups go through, in order, an
existing binding, an LTI 1.1 legacy account and, failing both, a new
LTI managed account.

Bindings are stored against the SHA-256 of the issuer and subject so the
platform identifiers are never used as lookup keys.
"""

import dataclasses
import hashlib
import hmac
import logging
import secrets
import time
import urllib.parse
from collections.abc import Callable

from .. import db, errors, mail, schemas, settings, templates
from . import migration
from .claims import LaunchMessage
from .roles import classify

logger = logging.getLogger(__name__)

USERNAME_PREFIX = "lti13_"


def hash_identifier(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def _identity_digest(issuer: str, subject: str) -> str:
    return hashlib.sha1(f"{issuer}_{subject}".encode()).hexdigest()  # noqa: S324


def lti_username(issuer: str, subject: str) -> str:
    """Returns the username given to accounts created from a launch."""
    return USERNAME_PREFIX + _identity_digest(issuer, subject)


def placeholder_email(issuer: str, subject: str) -> str:
    return f"{_identity_digest(issuer, subject)}@example.com"


@dataclasses.dataclass(frozen=True)
class PlatformProfile:
    """Profile fields a platform shares about one of its users."""

    issuer: str
    subject: str
    given_name: str | None = None
    family_name: str | None = None
    email: str | None = None
    picture: str | None = None
    locale: str | None = None

    @classmethod
    def from_launch(cls, message: LaunchMessage) -> "PlatformProfile":
        return cls(
            issuer=message.issuer,
            subject=message.subject,
            given_name=message.given_name,
            family_name=message.family_name,
            email=message.email,
            picture=message.picture,
            locale=message.locale,
        )

    @classmethod
    def from_member(cls, issuer: str, member: schemas.Member) -> "PlatformProfile":
        return cls(
            issuer=issuer,
            subject=member.user_id,
            given_name=member.given_name,
            family_name=member.family_name,
            email=member.email,
            picture=member.picture,
        )

    def new_account(self) -> schemas.Account:
        return schemas.Account(
            username=lti_username(self.issuer, self.subject),
            auth=schemas.AUTH_LTI,
            confirmed=True,
            firstname=self.given_name or self.subject,
            lastname=self.family_name or self.issuer,
            email=self.email or placeholder_email(self.issuer, self.subject),
            lang=_lang(self.locale) or "en",
            picture=self.picture,
        )

    def refresh(self, account: schemas.Account) -> schemas.Account:
        """Returns the account with the shared fields replaced."""
        update: dict[str, str] = {}
        if self.given_name:
            update["firstname"] = self.given_name
        if self.family_name:
            update["lastname"] = self.family_name
        if self.email:
            update["email"] = self.email
        if self.picture:
            update["picture"] = self.picture
        if lang := _lang(self.locale):
            update["lang"] = lang
        return account.model_copy(update=update)


def _lang(locale: str | None) -> str | None:
    if not locale:
        return None
    return locale.replace("-", "_").lower()


@dataclasses.dataclass(frozen=True)
class ResolvedIdentity:
    account: schemas.Account
    created: bool = False
    # consumer key of the LTI 1.1 tool the account was migrated from
    migrated_from: str | None = None


class IdentityResolver:
    """Finds, creates and binds local accounts for platform users."""

    def __init__(
        self,
        accounts: db.stores.AccountStore | None = None,
        bindings: db.stores.BindingStore | None = None,
        legacy: db.stores.LegacyStore | None = None,
        email_sender: mail.EmailSender | None = None,
        now: Callable[[], float] = time.time,
    ) -> None:
        self.accounts = accounts or db.account_store
        self.bindings = bindings or db.binding_store
        self.legacy = legacy or db.legacy_store
        self.email_sender = email_sender or mail.default_sender()
        self.now = now

    async def create_user_binding(
        self, issuer: str, subject: str, account_id: str
    ) -> None:
        """Binds the platform identity to the account.

        A pending, unconfirmed, binding for the pair is replaced.
        """
        issuer_hash, subject_hash = hash_identifier(issuer), hash_identifier(subject)
        if existing := await self.bindings.find(issuer_hash, subject_hash):
            if existing.is_confirmed:
                if existing.account_id != account_id:
                    logger.warning(
                        "identity already bound to [%s], not [%s]",
                        existing.account_id,
                        account_id,
                    )
                return
            await self.bindings.delete(issuer_hash, subject_hash)

        await self.bindings.add(
            schemas.IdentityBinding(
                account_id=account_id,
                issuer_hash=issuer_hash,
                subject_hash=subject_hash,
                created_at=int(self.now()),
            )
        )
        logger.info("bound platform identity to account [%s]", account_id)

    async def get_user_binding(self, issuer: str, subject: str) -> str | None:
        """Returns the id of the account bound to the identity, if confirmed."""
        binding = await self.bindings.find(
            hash_identifier(issuer), hash_identifier(subject)
        )
        if binding is None or not binding.is_confirmed:
            return None
        return binding.account_id

    async def delete_user_binding(self, issuer: str, subject: str) -> None:
        await self.bindings.delete(hash_identifier(issuer), hash_identifier(subject))

    async def _bound_account(self, profile: PlatformProfile) -> schemas.Account | None:
        account_id = await self.get_user_binding(profile.issuer, profile.subject)
        if account_id is None:
            return None
        if (account := await self.accounts.find_user(account_id)) is None:
            logger.error("binding points at missing account [%s]", account_id)
            await self.delete_user_binding(profile.issuer, profile.subject)
            return None
        return await self._refresh(account, profile)

    async def _refresh(
        self, account: schemas.Account, profile: PlatformProfile
    ) -> schemas.Account:
        # accounts managed elsewhere keep the profile their owner set
        if not account.is_lti_managed:
            return account
        refreshed = profile.refresh(account)
        if refreshed != account:
            await self.accounts.update_user(refreshed)
        return refreshed

    async def create_account(self, profile: PlatformProfile) -> schemas.Account:
        """Creates an LTI managed account and binds it to the identity."""
        if settings.PREVENT_ACCOUNT_CREATION:
            raise errors.AccountCreationDisabled()
        new_account = profile.new_account()
        account_id = await self.accounts.create_user(new_account)
        await self.create_user_binding(profile.issuer, profile.subject, account_id)
        return new_account.model_copy(update={"id": account_id})

    async def _migrated_account(
        self, message: LaunchMessage
    ) -> tuple[schemas.Account, str] | None:
        if not migration.is_applicable(message):
            return None
        claim = message.migration_claim
        assert claim is not None and claim.consumer_key is not None  # noqa: S101
        if not (known_secrets := await self.legacy.secrets_for(claim.consumer_key)):
            logger.info("no legacy secrets for consumer [%s]", claim.consumer_key)
            return None

        legacy_user_id = migration.validate(message, known_secrets)
        if legacy_user_id is None:
            return None
        account = await self.legacy.find_by_consumer(claim.consumer_key, legacy_user_id)
        if account is None:
            logger.info("no legacy user for consumer [%s]", claim.consumer_key)
            return None
        return account, claim.consumer_key

    async def find_or_create_user_from_launch(
        self, message: LaunchMessage, *, allow_create: bool = True
    ) -> ResolvedIdentity | None:
        """Returns the local account of the launching user.

        Returns None, when ``allow_create`` is False, if the user has no
        binding and no legacy account, so the caller can ask the user what
        to do.
        """
        profile = PlatformProfile.from_launch(message)
        if account := await self._bound_account(profile):
            return ResolvedIdentity(account)

        if not classify(message.roles).is_privileged:
            if migrated := await self._migrated_account(message):
                account, consumer_key = migrated
                await self.create_user_binding(
                    profile.issuer, profile.subject, account.id or ""
                )
                logger.info(
                    "migrated legacy user of [%s] to account [%s]",
                    consumer_key,
                    account.id,
                )
                account = await self._refresh(account, profile)
                return ResolvedIdentity(account, migrated_from=consumer_key)

        if not allow_create:
            return None
        return ResolvedIdentity(await self.create_account(profile), created=True)

    async def find_or_create_user_from_membership(
        self,
        member: schemas.Member,
        issuer: str,
        legacy_consumer_key: str | None = None,
    ) -> ResolvedIdentity:
        """Returns the local account of an NRPS member.

        Members come from a server to server call, so the legacy user id they
        carry is trusted without a signature.
        """
        profile = PlatformProfile.from_member(issuer, member)
        if account := await self._bound_account(profile):
            return ResolvedIdentity(account)

        legacy_user_id = member.lti11_legacy_user_id
        if (
            legacy_consumer_key
            and legacy_user_id
            and not classify(member.roles).is_privileged
        ):
            account = await self.legacy.find_by_consumer(
                legacy_consumer_key, legacy_user_id
            )
            if account is not None:
                await self.create_user_binding(issuer, member.user_id, account.id or "")
                account = await self._refresh(account, profile)
                return ResolvedIdentity(account, migrated_from=legacy_consumer_key)

        return ResolvedIdentity(await self.create_account(profile), created=True)

    async def send_account_link_confirmation_email(
        self,
        account: schemas.Account,
        message: LaunchMessage,
        *,
        confirm_url: str,
        return_url: str,
    ) -> bool:
        """Starts a pending binding and emails its confirmation link.

        Returns False if the identity is already bound or the email could
        not be sent. A pending binding left behind by a failed send simply
        expires.
        """
        if account.id is None:
            raise ValueError("ACCOUNT_NOT_PERSISTED")
        now = int(self.now())
        if purged := await self.bindings.purge_expired(now):
            logger.info("removed %s abandoned account links", purged)
        token = secrets.token_urlsafe(32)
        pending = await self.bindings.replace_unconfirmed(
            schemas.IdentityBinding(
                account_id=account.id,
                issuer_hash=hash_identifier(message.issuer),
                subject_hash=hash_identifier(message.subject),
                token=token,
                token_expiry=now + settings.ACCOUNT_LINK_EXPIRY,
                created_at=now,
            )
        )
        if pending is None:
            logger.warning("identity already bound, not linking [%s]", account.id)
            return False

        query = urllib.parse.urlencode(
            {
                "token": token,
                "iss": message.issuer,
                "sub": message.subject,
                "userid": account.id,
                "returnurl": return_url,
            }
        )
        link = f"{confirm_url}?{query}"
        subject, body_text, body_html = templates.account_link_email(account, link)
        sent = await self.email_sender.send(
            account.email, subject, body_text, body_html
        )
        if not sent:
            logger.error("account link email to [%s] was not sent", account.id)
        return sent

    async def confirm_user_binding(
        self, issuer: str, subject: str, account_id: str, token: str
    ) -> bool:
        """Makes a pending binding permanent.

        Never raises for a bad link, returns False instead. An expired
        binding is removed.
        """
        issuer_hash, subject_hash = hash_identifier(issuer), hash_identifier(subject)
        binding = await self.bindings.find(issuer_hash, subject_hash)
        if binding is None or binding.is_confirmed:
            logger.warning("no pending binding to confirm for [%s]", account_id)
            return False

        if binding.is_expired(self.now()):
            logger.warning("expired binding for [%s] removed", binding.account_id)
            await self.bindings.delete(issuer_hash, subject_hash)
            return False

        if binding.account_id != account_id or not hmac.compare_digest(
            (binding.token or "").encode(), token.encode()
        ):
            logger.warning("binding confirmation mismatch for [%s]", account_id)
            return False

        confirmed = await self.bindings.confirm(issuer_hash, subject_hash, token)
        if confirmed:
            logger.info("binding confirmed for account [%s]", account_id)
        return confirmed
