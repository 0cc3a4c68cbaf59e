"""
Authenticator boundary for client-side ceremonies.

``Authenticator`` stands in for ``navigator.credentials``: it receives the
options JSON produced by the server and returns the PublicKeyCredential JSON
the browser would send back. ``SoftwareAuthenticator`` is a complete ES256
platform authenticator with ``none`` attestation, used for automated
end-to-end checks and local tooling.
"""

import hashlib
import json
import logging
import secrets
import struct
from dataclasses import dataclass
from typing import Any, Dict, Optional

import cbor2
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url

from esg_auth.errors import CeremonyCancelledByUser

logger = logging.getLogger(__name__)

FLAG_USER_PRESENT = 0x01
FLAG_USER_VERIFIED = 0x04
FLAG_ATTESTED_CREDENTIAL_DATA = 0x40

COSE_ALG_ES256 = -7


class Authenticator:
    """What the orchestrator needs from the platform."""

    async def create(self, options: Dict[str, Any]) -> Dict[str, Any]:
        """``navigator.credentials.create()``; raises CeremonyCancelledByUser."""
        raise NotImplementedError

    async def get(self, options: Dict[str, Any]) -> Dict[str, Any]:
        """``navigator.credentials.get()``; raises CeremonyCancelledByUser."""
        raise NotImplementedError


@dataclass
class SoftCredential:
    credential_id: bytes
    private_key: ec.EllipticCurvePrivateKey
    rp_id: str
    user_handle: bytes
    sign_count: int = 0

    def cose_public_key(self) -> bytes:
        numbers = self.private_key.public_key().public_numbers()
        return cbor2.dumps({
            1: 2,  # kty: EC2
            3: COSE_ALG_ES256,
            -1: 1,  # crv: P-256
            -2: numbers.x.to_bytes(32, "big"),
            -3: numbers.y.to_bytes(32, "big"),
        })


class SoftwareAuthenticator(Authenticator):
    """
    In-memory ES256 authenticator.

    Args:
        origin: Origin written into clientDataJSON
        counter_step: Added to the signature counter on every assertion;
            0 emulates authenticators that never count
        user_verified: Whether to set the UV flag
    """

    def __init__(self, origin: str, counter_step: int = 1, user_verified: bool = True):
        self.origin = origin
        self.counter_step = counter_step
        self.user_verified = user_verified
        self.credentials: Dict[bytes, SoftCredential] = {}
        self.cancel_next = False

    def _flags(self, attested: bool = False) -> int:
        flags = FLAG_USER_PRESENT
        if self.user_verified:
            flags |= FLAG_USER_VERIFIED
        if attested:
            flags |= FLAG_ATTESTED_CREDENTIAL_DATA
        return flags

    def _client_data(self, ceremony: str, challenge: str) -> bytes:
        return json.dumps({
            "type": ceremony,
            "challenge": challenge,
            "origin": self.origin,
            "crossOrigin": False,
        }).encode("utf-8")

    def _check_cancel(self) -> None:
        if self.cancel_next:
            self.cancel_next = False
            raise CeremonyCancelledByUser("NotAllowedError: the operation was cancelled")

    async def create(self, options: Dict[str, Any]) -> Dict[str, Any]:
        self._check_cancel()

        rp_id = options["rp"]["id"]
        excluded = {base64url_to_bytes(c["id"]) for c in options.get("excludeCredentials", [])}
        if excluded & set(self.credentials):
            raise CeremonyCancelledByUser("InvalidStateError: credential already registered")

        credential = SoftCredential(
            credential_id=secrets.token_bytes(32),
            private_key=ec.generate_private_key(ec.SECP256R1()),
            rp_id=rp_id,
            user_handle=base64url_to_bytes(options["user"]["id"]),
        )
        self.credentials[credential.credential_id] = credential

        auth_data = (
            hashlib.sha256(rp_id.encode("utf-8")).digest()
            + bytes([self._flags(attested=True)])
            + struct.pack(">I", credential.sign_count)
            + bytes(16)  # AAGUID
            + struct.pack(">H", len(credential.credential_id))
            + credential.credential_id
            + credential.cose_public_key()
        )
        attestation_object = cbor2.dumps({"fmt": "none", "attStmt": {}, "authData": auth_data})
        credential_id = bytes_to_base64url(credential.credential_id)

        return {
            "id": credential_id,
            "rawId": credential_id,
            "type": "public-key",
            "response": {
                "clientDataJSON": bytes_to_base64url(
                    self._client_data("webauthn.create", options["challenge"])
                ),
                "attestationObject": bytes_to_base64url(attestation_object),
                "transports": ["internal"],
            },
            "clientExtensionResults": {},
            "authenticatorAttachment": "platform",
        }

    async def get(self, options: Dict[str, Any]) -> Dict[str, Any]:
        self._check_cancel()

        credential = self._pick(options)
        credential.sign_count += self.counter_step
        return self.assert_with(credential, options["challenge"])

    def assert_with(
        self,
        credential: SoftCredential,
        challenge: str,
        sign_count: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Build an assertion for ``challenge`` without touching the counter."""
        count = credential.sign_count if sign_count is None else sign_count
        auth_data = (
            hashlib.sha256(credential.rp_id.encode("utf-8")).digest()
            + bytes([self._flags()])
            + struct.pack(">I", count)
        )
        client_data = self._client_data("webauthn.get", challenge)
        signature = credential.private_key.sign(
            auth_data + hashlib.sha256(client_data).digest(),
            ec.ECDSA(hashes.SHA256()),
        )
        credential_id = bytes_to_base64url(credential.credential_id)

        return {
            "id": credential_id,
            "rawId": credential_id,
            "type": "public-key",
            "response": {
                "clientDataJSON": bytes_to_base64url(client_data),
                "authenticatorData": bytes_to_base64url(auth_data),
                "signature": bytes_to_base64url(signature),
                "userHandle": bytes_to_base64url(credential.user_handle),
            },
            "clientExtensionResults": {},
            "authenticatorAttachment": "platform",
        }

    def _pick(self, options: Dict[str, Any]) -> SoftCredential:
        for allowed in options.get("allowCredentials", []):
            credential = self.credentials.get(base64url_to_bytes(allowed["id"]))
            if credential is not None:
                return credential
        # Browsers report "no matching credential" as NotAllowedError too
        raise CeremonyCancelledByUser("NotAllowedError: no matching credential")
