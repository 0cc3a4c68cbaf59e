"""Passkey registration and authentication ceremonies."""

import asyncio
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select, update

from esg_auth.client.authenticator import SoftwareAuthenticator
from esg_auth.config import settings
from esg_auth.errors import (
    AccountNotFound,
    AssertionInvalid,
    AttestationInvalid,
    ChallengeExpiredOrMissing,
    CredentialNotRecognized,
    InvalidOperation,
    NoPasskeyAvailable,
    PasskeyNotFound,
)
from esg_auth.models.account import AccountRole
from esg_auth.models.recovery_code import RecoveryCode
from esg_auth.models.security_log import SecurityEventType, SecurityLog
from esg_auth.models.webauthn_challenge import WebAuthnChallenge
from esg_auth.models.webauthn_credential import WebAuthnCredential
from esg_auth.services.account_service import AccountService
from esg_auth.services.webauthn_service import WebAuthnService

from tests.utils import register_passkey


@pytest.fixture
async def alice(db):
    return await AccountService(db).create_account("alice@esg-lite.ru")


def only_credential(authenticator: SoftwareAuthenticator):
    (credential,) = authenticator.credentials.values()
    return credential


async def login(db, authenticator, email="alice@esg-lite.ru"):
    service = WebAuthnService(db)
    options = await service.begin_authentication(email)
    assertion = await authenticator.get(options)
    return await service.finish_authentication(email, assertion)


async def test_registration_options_shape(db, alice):
    options = await WebAuthnService(db).begin_registration(alice.id)

    assert options["rp"] == {"id": settings.rp_id, "name": settings.rp_name}
    assert options["user"]["name"] == "alice@esg-lite.ru"
    assert options["attestation"] == "none"
    assert options["authenticatorSelection"]["userVerification"] == "required"
    assert options["authenticatorSelection"]["residentKey"] == "preferred"
    assert [p["alg"] for p in options["pubKeyCredParams"]] == [-7, -257, -8]
    assert options.get("excludeCredentials", []) == []


async def test_first_registration_issues_recovery_codes(db, alice, authenticator):
    outcome = await register_passkey(db, authenticator, alice)

    assert len(outcome.recovery_codes) == settings.recovery_code_count
    assert outcome.credential.sign_count == 0
    assert outcome.credential.account_id == alice.id
    assert outcome.credential.credential_id == only_credential(authenticator).credential_id


async def test_second_passkey_gets_no_new_codes(db, alice, authenticator):
    await register_passkey(db, authenticator, alice)

    options = await WebAuthnService(db).begin_registration(alice.id)
    assert len(options.get("excludeCredentials", [])) == 1

    second = SoftwareAuthenticator(origin=settings.origin)
    outcome = await register_passkey(db, second, alice)
    assert outcome.recovery_codes == []
    assert len(await WebAuthnService(db).get_account_credentials(alice.id)) == 2


async def test_registration_rejects_foreign_origin(db, alice):
    service = WebAuthnService(db)
    options = await service.begin_registration(alice.id)
    attestation = await SoftwareAuthenticator(origin="https://evil.example").create(options)

    with pytest.raises(AttestationInvalid):
        await service.finish_registration(alice.id, attestation)

    # The failed attempt used up the challenge
    with pytest.raises(ChallengeExpiredOrMissing):
        await service.finish_registration(alice.id, attestation)


async def test_registration_requires_user_verification(db, alice):
    service = WebAuthnService(db)
    options = await service.begin_registration(alice.id)
    authenticator = SoftwareAuthenticator(origin=settings.origin, user_verified=False)
    attestation = await authenticator.create(options)

    with pytest.raises(AttestationInvalid):
        await service.finish_registration(alice.id, attestation)


async def test_registration_without_challenge(db, alice, authenticator):
    options = await WebAuthnService(db).begin_registration(alice.id)
    attestation = await authenticator.create(options)
    await db.execute(
        update(WebAuthnChallenge).values(expires_at=datetime.utcnow() - timedelta(seconds=1))
    )
    await db.commit()

    with pytest.raises(ChallengeExpiredOrMissing):
        await WebAuthnService(db).finish_registration(alice.id, attestation)


async def test_authentication_with_expired_challenge(db, alice, authenticator):
    await register_passkey(db, authenticator, alice)
    service = WebAuthnService(db)
    options = await service.begin_authentication("alice@esg-lite.ru")
    assertion = await authenticator.get(options)
    await db.execute(
        update(WebAuthnChallenge).values(expires_at=datetime.utcnow() - timedelta(seconds=1))
    )
    await db.commit()

    with pytest.raises(ChallengeExpiredOrMissing):
        await service.finish_authentication("alice@esg-lite.ru", assertion)

    credential = (await db.execute(select(WebAuthnCredential))).scalar_one()
    await db.refresh(credential)
    assert credential.sign_count == 0
    assert credential.flagged_at is None


async def test_authentication_advances_counter(db, alice, authenticator):
    await register_passkey(db, authenticator, alice)

    outcome = await login(db, authenticator)
    assert outcome.account.id == alice.id
    assert outcome.credential.sign_count == 1
    assert outcome.credential.last_used_at is not None

    outcome = await login(db, authenticator)
    assert outcome.credential.sign_count == 2


async def test_authentication_unknown_email(db):
    with pytest.raises(AccountNotFound):
        await WebAuthnService(db).begin_authentication("nobody@esg-lite.ru")


async def test_authentication_without_passkey(db, alice):
    with pytest.raises(NoPasskeyAvailable):
        await WebAuthnService(db).begin_authentication("alice@esg-lite.ru")


async def test_authentication_deactivated_account(db, alice, authenticator):
    await register_passkey(db, authenticator, alice)
    await AccountService(db).deactivate(alice.id)

    with pytest.raises(AccountNotFound):
        await WebAuthnService(db).begin_authentication("alice@esg-lite.ru")


async def test_admin_only_hides_end_users(db, alice, authenticator):
    await register_passkey(db, authenticator, alice)

    with pytest.raises(AccountNotFound):
        await WebAuthnService(db).begin_authentication("alice@esg-lite.ru", admin_only=True)


async def test_email_lookup_is_case_insensitive(db, alice, authenticator):
    await register_passkey(db, authenticator, alice)
    outcome = await login(db, authenticator, email="  Alice@ESG-Lite.ru ")
    assert outcome.account.id == alice.id


async def test_assertion_from_foreign_origin(db, alice, authenticator):
    await register_passkey(db, authenticator, alice)
    service = WebAuthnService(db)
    options = await service.begin_authentication("alice@esg-lite.ru")

    phisher = SoftwareAuthenticator(origin="https://evil.example")
    phisher.credentials = authenticator.credentials
    assertion = await phisher.get(options)

    with pytest.raises(AssertionInvalid):
        await service.finish_authentication("alice@esg-lite.ru", assertion)


async def test_replayed_assertion_is_rejected(db, alice, authenticator):
    await register_passkey(db, authenticator, alice)
    service = WebAuthnService(db)
    options = await service.begin_authentication("alice@esg-lite.ru")
    assertion = await authenticator.get(options)
    await service.finish_authentication("alice@esg-lite.ru", assertion)

    with pytest.raises(ChallengeExpiredOrMissing):
        await service.finish_authentication("alice@esg-lite.ru", assertion)

    # A fresh challenge does not help: the signature covers the old one
    await service.begin_authentication("alice@esg-lite.ru")
    with pytest.raises(AssertionInvalid):
        await service.finish_authentication("alice@esg-lite.ru", assertion)


async def test_counter_regression_flags_credential(db, alice, authenticator):
    await register_passkey(db, authenticator, alice)
    await login(db, authenticator)

    service = WebAuthnService(db)
    options = await service.begin_authentication("alice@esg-lite.ru")
    cloned = authenticator.assert_with(only_credential(authenticator), options["challenge"], 1)

    with pytest.raises(AssertionInvalid):
        await service.finish_authentication("alice@esg-lite.ru", cloned)

    credential = (await db.execute(select(WebAuthnCredential))).scalar_one()
    await db.refresh(credential)
    assert credential.flagged_at is not None
    assert credential.sign_count == 1

    logs = await db.execute(
        select(SecurityLog).where(
            SecurityLog.event_type == SecurityEventType.COUNTER_REGRESSION.value
        )
    )
    log = logs.scalar_one()
    assert log.is_high_risk()
    assert log.event_metadata["presented_sign_count"] == 1

    with pytest.raises(NoPasskeyAvailable):
        await service.begin_authentication("alice@esg-lite.ru")
    status = await service.status("alice@esg-lite.ru")
    assert status.has_user and not status.has_passkey


async def test_zero_counter_rejected_by_default(db, alice):
    authenticator = SoftwareAuthenticator(origin=settings.origin, counter_step=0)
    await register_passkey(db, authenticator, alice)

    with pytest.raises(AssertionInvalid):
        await login(db, authenticator)


async def test_zero_counter_allowed_when_configured(db, alice, monkeypatch):
    monkeypatch.setattr(settings, "webauthn_allow_zero_counter", True)
    authenticator = SoftwareAuthenticator(origin=settings.origin, counter_step=0)
    await register_passkey(db, authenticator, alice)

    assert (await login(db, authenticator)).credential.sign_count == 0
    assert (await login(db, authenticator)).credential.sign_count == 0


async def test_concurrent_double_submit(session_factory, alice, authenticator):
    async with session_factory() as session:
        await register_passkey(session, authenticator, alice)
        options = await WebAuthnService(session).begin_authentication("alice@esg-lite.ru")
    assertion = await authenticator.get(options)

    async def submit():
        async with session_factory() as session:
            return await WebAuthnService(session).finish_authentication(
                "alice@esg-lite.ru", assertion
            )

    results = await asyncio.gather(submit(), submit(), return_exceptions=True)
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], ChallengeExpiredOrMissing)

    credential = only_credential(authenticator)
    async with session_factory() as session:
        stored = (await session.execute(select(WebAuthnCredential))).scalar_one()
    assert stored.sign_count == credential.sign_count


async def test_foreign_credential_not_recognized(db, alice, authenticator):
    bob = await AccountService(db).create_account("bob@esg-lite.ru")
    bob_authenticator = SoftwareAuthenticator(origin=settings.origin)
    await register_passkey(db, authenticator, alice)
    await register_passkey(db, bob_authenticator, bob)

    service = WebAuthnService(db)
    options = await service.begin_authentication("alice@esg-lite.ru")
    assertion = bob_authenticator.assert_with(
        only_credential(bob_authenticator), options["challenge"], 7
    )

    with pytest.raises(CredentialNotRecognized):
        await service.finish_authentication("alice@esg-lite.ru", assertion)


async def test_status_reports_paths(db, alice, authenticator):
    service = WebAuthnService(db)
    assert not (await service.status("ghost@esg-lite.ru")).has_user

    status = await service.status("alice@esg-lite.ru")
    assert status.has_user and not status.has_passkey and not status.can_use_passkey

    await register_passkey(db, authenticator, alice)
    status = await service.status("alice@esg-lite.ru")
    assert status.has_passkey and status.can_use_passkey


async def test_remove_requires_ownership(db, alice, authenticator):
    bob = await AccountService(db).create_account("bob@esg-lite.ru")
    outcome = await register_passkey(db, authenticator, alice)

    with pytest.raises(PasskeyNotFound):
        await WebAuthnService(db).remove_credential(bob, outcome.credential.id)

    await WebAuthnService(db).remove_credential(alice, outcome.credential.id)
    assert await WebAuthnService(db).get_account_credentials(alice.id) == []


async def test_admin_cannot_remove_last_passkey_without_codes(db, authenticator):
    admin = await AccountService(db).create_account(
        "root@esg-lite.ru", role=AccountRole.SUPER_ADMIN
    )
    outcome = await register_passkey(db, authenticator, admin)
    await db.execute(
        update(RecoveryCode)
        .where(RecoveryCode.account_id == admin.id)
        .values(used_at=datetime.utcnow())
    )
    await db.commit()

    with pytest.raises(InvalidOperation):
        await WebAuthnService(db).remove_credential(admin, outcome.credential.id)


async def test_admin_can_remove_last_passkey_with_codes(db, authenticator):
    admin = await AccountService(db).create_account(
        "root@esg-lite.ru", role=AccountRole.SUPER_ADMIN
    )
    outcome = await register_passkey(db, authenticator, admin)

    await WebAuthnService(db).remove_credential(admin, outcome.credential.id)
    assert await WebAuthnService(db).get_account_credentials(admin.id) == []
