"""WebAuthn credential model for storing account passkeys."""

import uuid
from datetime import datetime
from typing import List

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    LargeBinary,
    String,
)
from webauthn.helpers import bytes_to_base64url

from esg_auth.database import Base


class WebAuthnCredential(Base):
    """
    WebAuthn credential model for storing authenticator public keys.

    One row per registered passkey. ``sign_count`` only ever moves forward;
    a regression marks the row with ``flagged_at`` for security review.
    """

    __tablename__ = "webauthn_credentials"

    id = Column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        index=True,
        doc="Unique credential record identifier"
    )

    account_id = Column(
        String(36),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        doc="Account that owns this credential"
    )

    credential_id = Column(
        LargeBinary,
        unique=True,
        nullable=False,
        index=True,
        doc="WebAuthn credential ID (binary)"
    )

    public_key = Column(
        LargeBinary,
        nullable=False,
        doc="COSE-encoded public key for verifying assertions"
    )

    sign_count = Column(
        Integer,
        default=0,
        nullable=False,
        doc="Signature counter for cloned-authenticator detection"
    )

    transports = Column(
        String(255),
        nullable=True,
        doc="Supported transport methods (comma-separated)"
    )

    name = Column(String(255), nullable=True, doc="User-friendly name")

    device_type = Column(
        String(50),
        nullable=True,
        doc="single_device or multi_device"
    )

    backed_up = Column(Boolean, default=False, nullable=False)

    last_used_at = Column(DateTime, nullable=True)

    flagged_at = Column(
        DateTime,
        nullable=True,
        doc="Set when a signature counter regression was observed"
    )

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        """String representation of credential."""
        return f"<WebAuthnCredential(id={self.id}, account_id={self.account_id})>"

    @property
    def credential_id_b64(self) -> str:
        """Credential ID as base64url, the form browsers send back."""
        return bytes_to_base64url(self.credential_id)

    @property
    def transports_list(self) -> List[str]:
        """Get transports as a list."""
        if not self.transports:
            return []
        return [t.strip() for t in self.transports.split(",") if t.strip()]

    @transports_list.setter
    def transports_list(self, transports: List[str]) -> None:
        """Set transports from a list."""
        self.transports = ",".join(transports) if transports else None
