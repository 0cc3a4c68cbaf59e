"""WebAuthn service for passkey registration and authentication ceremonies."""

import json
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from webauthn import (
    generate_authentication_options,
    generate_registration_options,
    options_to_json,
    verify_authentication_response,
    verify_registration_response,
)
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url
from webauthn.helpers.cose import COSEAlgorithmIdentifier
from webauthn.helpers.exceptions import WebAuthnException
from webauthn.helpers.structs import (
    AttestationConveyancePreference,
    AuthenticatorSelectionCriteria,
    AuthenticatorTransport,
    PublicKeyCredentialDescriptor,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from esg_auth.config import settings
from esg_auth.errors import (
    AccountNotFound,
    AssertionInvalid,
    AttestationInvalid,
    CredentialNotRecognized,
    InvalidOperation,
    NoPasskeyAvailable,
    PasskeyNotFound,
)
from esg_auth.models.account import Account, normalize_email
from esg_auth.models.security_log import SecurityEventType, SecurityLog
from esg_auth.models.webauthn_challenge import CeremonyType
from esg_auth.models.webauthn_credential import WebAuthnCredential
from esg_auth.security.client_info import ClientInfo
from esg_auth.services.challenge_service import ChallengeService
from esg_auth.services.recovery_code_service import RecoveryCodeService

logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHMS = [
    COSEAlgorithmIdentifier.ECDSA_SHA_256,
    COSEAlgorithmIdentifier.RSASSA_PKCS1_v1_5_SHA_256,
    COSEAlgorithmIdentifier.EDDSA,
]

# Malformed client JSON surfaces from py_webauthn as any of these
VERIFICATION_ERRORS = (WebAuthnException, ValueError, KeyError, TypeError)


@dataclass
class RegistrationOutcome:
    credential: WebAuthnCredential
    recovery_codes: List[str] = field(default_factory=list)


@dataclass
class AuthenticationOutcome:
    account: Account
    credential: WebAuthnCredential


@dataclass
class PasskeyStatus:
    has_user: bool
    has_passkey: bool
    can_use_passkey: bool


def _to_transports(values: List[str]) -> List[AuthenticatorTransport]:
    transports = []
    for value in values:
        try:
            transports.append(AuthenticatorTransport(value))
        except ValueError:
            logger.debug(f"Ignoring unknown authenticator transport: {value}")
    return transports


def _descriptor(credential: WebAuthnCredential) -> PublicKeyCredentialDescriptor:
    return PublicKeyCredentialDescriptor(
        id=credential.credential_id,
        transports=_to_transports(credential.transports_list) or None,
    )


def _raw_credential_id(payload: Dict[str, Any]) -> bytes:
    raw = payload.get("rawId") or payload.get("id")
    if not isinstance(raw, str) or not raw:
        raise CredentialNotRecognized("assertion carries no credential id")
    try:
        return base64url_to_bytes(raw)
    except ValueError as e:
        raise CredentialNotRecognized(f"credential id is not base64url: {e}")


class WebAuthnService:
    """Service class for WebAuthn operations."""

    def __init__(self, db: AsyncSession):
        """Initialize WebAuthn service with database session."""
        self.db = db
        self.challenges = ChallengeService(db)

    async def begin_registration(
        self,
        account_id: str,
        client: Optional[ClientInfo] = None,
    ) -> Dict[str, Any]:
        """
        Start WebAuthn registration process.

        Args:
            account_id: Account the new passkey will belong to
            client: Request metadata

        Returns:
            Dict: Options for ``navigator.credentials.create()``

        Raises:
            AccountNotFound: Unknown or deactivated account
        """
        account = await self._get_account(account_id)
        if account is None or not account.can_authenticate():
            raise AccountNotFound(f"account {account_id} unavailable for registration")

        existing = await self.get_account_credentials(account.id)
        options = generate_registration_options(
            rp_id=settings.rp_id,
            rp_name=settings.rp_name,
            user_id=account.get_webauthn_user_handle(),
            user_name=account.email,
            user_display_name=account.display_name or account.email,
            challenge=secrets.token_bytes(32),
            timeout=settings.webauthn_timeout_ms,
            attestation=AttestationConveyancePreference.NONE,
            authenticator_selection=AuthenticatorSelectionCriteria(
                resident_key=ResidentKeyRequirement.PREFERRED,
                user_verification=UserVerificationRequirement.REQUIRED,
            ),
            exclude_credentials=[_descriptor(cred) for cred in existing],
            supported_pub_key_algs=SUPPORTED_ALGORITHMS,
        )

        await self.challenges.issue(
            account.id,
            CeremonyType.REGISTRATION,
            bytes_to_base64url(options.challenge),
            client,
        )

        self.db.add(SecurityLog.create_log(
            event_type=SecurityEventType.REGISTRATION_START,
            description=f"Passkey registration started: {account.email}",
            account_id=account.id,
            ip_address=client.ip_address if client else None,
            user_agent=client.user_agent if client else None,
        ))
        await self.db.commit()

        return json.loads(options_to_json(options))

    async def finish_registration(
        self,
        account_id: str,
        attestation: Dict[str, Any],
        client: Optional[ClientInfo] = None,
        credential_name: Optional[str] = None,
    ) -> RegistrationOutcome:
        """
        Complete WebAuthn registration process.

        The challenge is consumed before the attestation is checked, so a
        failed attempt cannot be retried against the same challenge.

        Returns:
            RegistrationOutcome: Stored credential and any recovery codes
            generated for the account

        Raises:
            ChallengeExpiredOrMissing: No live registration challenge
            AttestationInvalid: Verification failed or credential already known
        """
        challenge = await self.challenges.consume(account_id, CeremonyType.REGISTRATION)

        account = await self._get_account(account_id)
        if account is None or not account.can_authenticate():
            raise AccountNotFound(f"account {account_id} unavailable for registration")

        try:
            verification = verify_registration_response(
                credential=attestation,
                expected_challenge=base64url_to_bytes(challenge.challenge),
                expected_rp_id=settings.rp_id,
                expected_origin=settings.expected_origins,
                require_user_verification=True,
                supported_pub_key_algs=SUPPORTED_ALGORITHMS,
            )
        except VERIFICATION_ERRORS as e:
            await self._log_event(
                SecurityEventType.REGISTRATION_FAILED,
                f"Passkey registration failed: {account.email}",
                account.id,
                client,
                {"error": str(e)},
                risk_level="medium",
            )
            logger.warning(f"Attestation rejected for account {account.id}: {e}")
            raise AttestationInvalid(str(e))

        if await self.get_credential_by_id(verification.credential_id):
            await self._log_event(
                SecurityEventType.REGISTRATION_FAILED,
                f"Passkey already registered: {account.email}",
                account.id,
                client,
                {"credential_id": bytes_to_base64url(verification.credential_id)},
                risk_level="medium",
            )
            raise AttestationInvalid("credential id already registered")

        response = attestation.get("response") or {}
        credential = WebAuthnCredential(
            account_id=account.id,
            credential_id=verification.credential_id,
            public_key=verification.credential_public_key,
            sign_count=verification.sign_count,
            name=credential_name,
            device_type=verification.credential_device_type.value,
            backed_up=verification.credential_backed_up,
        )
        credential.transports_list = [
            t for t in response.get("transports") or [] if isinstance(t, str)
        ]
        self.db.add(credential)

        self.db.add(SecurityLog.create_log(
            event_type=SecurityEventType.REGISTRATION_SUCCESS,
            description=f"Passkey registered: {account.email}",
            account_id=account.id,
            ip_address=client.ip_address if client else None,
            user_agent=client.user_agent if client else None,
            metadata={
                "credential_id": bytes_to_base64url(verification.credential_id),
                "device_type": credential.device_type,
                "backed_up": credential.backed_up,
            },
        ))
        await self.db.commit()

        recovery_codes = await RecoveryCodeService(self.db).ensure_batch(account.id)
        logger.info(
            f"Passkey registered for account {account.id}, "
            f"{len(recovery_codes)} recovery code(s) issued"
        )
        return RegistrationOutcome(credential=credential, recovery_codes=recovery_codes)

    async def begin_authentication(
        self,
        email: str,
        client: Optional[ClientInfo] = None,
        admin_only: bool = False,
    ) -> Dict[str, Any]:
        """
        Start WebAuthn authentication process.

        Args:
            email: Account email
            client: Request metadata
            admin_only: Treat non-admin accounts as unknown

        Returns:
            Dict: Options for ``navigator.credentials.get()``

        Raises:
            AccountNotFound: Unknown or deactivated account
            NoPasskeyAvailable: Account has no usable passkey
        """
        account = await self._get_login_account(email, admin_only)

        credentials = [
            cred for cred in await self.get_account_credentials(account.id)
            if cred.flagged_at is None
        ]
        if not credentials:
            raise NoPasskeyAvailable(f"account {account.id} has no usable passkey")

        options = generate_authentication_options(
            rp_id=settings.rp_id,
            challenge=secrets.token_bytes(32),
            timeout=settings.webauthn_timeout_ms,
            allow_credentials=[_descriptor(cred) for cred in credentials],
            user_verification=UserVerificationRequirement.REQUIRED,
        )

        await self.challenges.issue(
            account.id,
            CeremonyType.AUTHENTICATION,
            bytes_to_base64url(options.challenge),
            client,
        )
        return json.loads(options_to_json(options))

    async def finish_authentication(
        self,
        email: str,
        assertion: Dict[str, Any],
        client: Optional[ClientInfo] = None,
        admin_only: bool = False,
    ) -> AuthenticationOutcome:
        """
        Complete WebAuthn authentication process.

        Raises:
            AccountNotFound: Unknown or deactivated account
            ChallengeExpiredOrMissing: No live authentication challenge
            CredentialNotRecognized: Credential is not one of the account's
            AssertionInvalid: Signature, origin, RP or counter check failed
        """
        account = await self._get_login_account(email, admin_only)
        challenge = await self.challenges.consume(account.id, CeremonyType.AUTHENTICATION)

        credential_id = _raw_credential_id(assertion)
        result = await self.db.execute(
            select(WebAuthnCredential).where(
                WebAuthnCredential.credential_id == credential_id,
                WebAuthnCredential.account_id == account.id,
            )
        )
        credential = result.scalar_one_or_none()
        if credential is None:
            await self._log_event(
                SecurityEventType.LOGIN_FAILED,
                f"Unrecognized passkey presented: {account.email}",
                account.id,
                client,
                {"credential_id": bytes_to_base64url(credential_id)},
                risk_level="medium",
            )
            raise CredentialNotRecognized(
                f"credential {bytes_to_base64url(credential_id)} not registered to {account.id}"
            )

        if credential.flagged_at is not None:
            raise AssertionInvalid(f"credential {credential.id} is flagged")

        try:
            # Counter monotonicity is enforced below, not by the library
            verification = verify_authentication_response(
                credential=assertion,
                expected_challenge=base64url_to_bytes(challenge.challenge),
                expected_rp_id=settings.rp_id,
                expected_origin=settings.expected_origins,
                credential_public_key=credential.public_key,
                credential_current_sign_count=0,
                require_user_verification=True,
            )
        except VERIFICATION_ERRORS as e:
            await self._log_event(
                SecurityEventType.LOGIN_FAILED,
                f"Passkey assertion rejected: {account.email}",
                account.id,
                client,
                {"error": str(e), "credential_id": credential.credential_id_b64},
                risk_level="medium",
            )
            logger.warning(f"Assertion rejected for account {account.id}: {e}")
            raise AssertionInvalid(str(e))

        stored = credential.sign_count
        new = verification.new_sign_count
        zero_counter = new == 0 and stored == 0 and settings.webauthn_allow_zero_counter
        if not zero_counter and new <= stored:
            await self._flag_counter_regression(account, credential, stored, new, client)
            raise AssertionInvalid(f"sign count regressed from {stored} to {new}")

        updated = await self.db.execute(
            update(WebAuthnCredential)
            .where(
                WebAuthnCredential.id == credential.id,
                WebAuthnCredential.sign_count == stored,
            )
            .values(sign_count=new, last_used_at=datetime.utcnow())
        )
        if updated.rowcount != 1:
            await self.db.rollback()
            raise AssertionInvalid(f"credential {credential.id} counter updated concurrently")
        await self.db.commit()
        await self.db.refresh(credential)

        return AuthenticationOutcome(account=account, credential=credential)

    async def get_account_credentials(self, account_id: str) -> List[WebAuthnCredential]:
        stmt = (
            select(WebAuthnCredential)
            .where(WebAuthnCredential.account_id == account_id)
            .order_by(WebAuthnCredential.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_credential_by_id(self, credential_id: bytes) -> Optional[WebAuthnCredential]:
        result = await self.db.execute(
            select(WebAuthnCredential).where(WebAuthnCredential.credential_id == credential_id)
        )
        return result.scalar_one_or_none()

    async def status(self, email: str) -> PasskeyStatus:
        """Report whether ``email`` can sign in with a passkey."""
        result = await self.db.execute(
            select(Account).where(Account.email == normalize_email(email))
        )
        account = result.scalar_one_or_none()
        if account is None:
            return PasskeyStatus(has_user=False, has_passkey=False, can_use_passkey=False)

        count = await self.db.execute(
            select(func.count(WebAuthnCredential.id)).where(
                WebAuthnCredential.account_id == account.id,
                WebAuthnCredential.flagged_at.is_(None),
            )
        )
        has_passkey = count.scalar_one() > 0
        return PasskeyStatus(
            has_user=True,
            has_passkey=has_passkey,
            can_use_passkey=has_passkey and account.can_authenticate(),
        )

    async def remove_credential(
        self,
        account: Account,
        passkey_id: str,
        client: Optional[ClientInfo] = None,
    ) -> None:
        """
        Remove one of the account's passkeys.

        Raises:
            PasskeyNotFound: No such passkey on this account
            InvalidOperation: Removing it would lock an admin out
        """
        result = await self.db.execute(
            select(WebAuthnCredential).where(
                WebAuthnCredential.id == passkey_id,
                WebAuthnCredential.account_id == account.id,
            )
        )
        credential = result.scalar_one_or_none()
        if credential is None:
            raise PasskeyNotFound(f"passkey {passkey_id} not owned by {account.id}")

        if account.is_admin:
            remaining = await self.db.execute(
                select(func.count(WebAuthnCredential.id)).where(
                    WebAuthnCredential.account_id == account.id
                )
            )
            unused_codes = await RecoveryCodeService(self.db).count_unused(account.id)
            if remaining.scalar_one() <= 1 and unused_codes == 0:
                raise InvalidOperation(
                    "Cannot remove the last passkey without unused recovery codes."
                )

        await self.db.delete(credential)
        self.db.add(SecurityLog.create_log(
            event_type=SecurityEventType.PASSKEY_REMOVED,
            description=f"Passkey removed: {account.email}",
            account_id=account.id,
            ip_address=client.ip_address if client else None,
            user_agent=client.user_agent if client else None,
            metadata={"credential_id": credential.credential_id_b64},
            risk_level="medium",
        ))
        await self.db.commit()

    async def _get_account(self, account_id: str) -> Optional[Account]:
        result = await self.db.execute(select(Account).where(Account.id == account_id))
        return result.scalar_one_or_none()

    async def _get_login_account(self, email: str, admin_only: bool) -> Account:
        result = await self.db.execute(
            select(Account).where(Account.email == normalize_email(email))
        )
        account = result.scalar_one_or_none()
        if account is None or not account.can_authenticate():
            raise AccountNotFound(f"no active account for {normalize_email(email)}")
        if admin_only and not account.is_admin:
            raise AccountNotFound(f"account {account.id} is not an admin")
        return account

    async def _flag_counter_regression(
        self,
        account: Account,
        credential: WebAuthnCredential,
        stored: int,
        new: int,
        client: Optional[ClientInfo],
    ) -> None:
        logger.error(
            f"Sign counter regression on credential {credential.id} "
            f"(account {account.id}): stored={stored} presented={new}"
        )
        await self.db.execute(
            update(WebAuthnCredential)
            .where(WebAuthnCredential.id == credential.id)
            .values(flagged_at=datetime.utcnow())
        )
        await self._log_event(
            SecurityEventType.COUNTER_REGRESSION,
            f"Possible cloned authenticator: {account.email}",
            account.id,
            client,
            {
                "credential_id": credential.credential_id_b64,
                "stored_sign_count": stored,
                "presented_sign_count": new,
            },
            risk_level="high",
        )

    async def _log_event(
        self,
        event_type: SecurityEventType,
        description: str,
        account_id: Optional[str],
        client: Optional[ClientInfo],
        metadata: Optional[Dict] = None,
        risk_level: str = "low",
    ) -> None:
        self.db.add(SecurityLog.create_log(
            event_type=event_type,
            description=description,
            account_id=account_id,
            ip_address=client.ip_address if client else None,
            user_agent=client.user_agent if client else None,
            metadata=metadata,
            risk_level=risk_level,
        ))
        await self.db.commit()
