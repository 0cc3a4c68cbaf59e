"""WebAuthn challenge model for storing registration and authentication challenges."""

import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from sqlalchemy import Column, DateTime, ForeignKey, String, Text

from esg_auth.database import Base


class CeremonyType(str, Enum):
    REGISTRATION = "registration"
    AUTHENTICATION = "authentication"


class WebAuthnChallenge(Base):
    """
    WebAuthn challenge model.

    A row is the only correlation between the begin and finish halves of a
    ceremony. It is consumed exactly once and is treated as absent once
    ``expires_at`` has passed.
    """

    __tablename__ = "webauthn_challenges"

    id = Column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        index=True,
        doc="Unique challenge identifier"
    )

    challenge = Column(
        Text,
        nullable=False,
        doc="Base64url encoded challenge bytes"
    )

    account_id = Column(
        String(36),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        doc="Account the ceremony is bound to"
    )

    ceremony = Column(
        String(20),
        nullable=False,
        index=True,
        doc="registration or authentication"
    )

    expires_at = Column(
        DateTime,
        nullable=False,
        index=True,
        doc="Challenge expiration time"
    )

    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        """String representation of challenge."""
        return (
            f"<WebAuthnChallenge(id={self.id}, account_id='{self.account_id}', "
            f"ceremony='{self.ceremony}')>"
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check if challenge has expired."""
        return (now or datetime.utcnow()) >= self.expires_at

    @classmethod
    def create_challenge(
        cls,
        challenge: str,
        account_id: str,
        ceremony: CeremonyType,
        ttl_seconds: int = 300,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> "WebAuthnChallenge":
        """
        Create a new WebAuthn challenge.

        Args:
            challenge: Base64url encoded challenge
            account_id: Account the ceremony belongs to
            ceremony: Registration or authentication
            ttl_seconds: Lifetime of the challenge
            ip_address: Requesting client address
            user_agent: Requesting client user agent

        Returns:
            WebAuthnChallenge: New challenge instance
        """
        now = datetime.utcnow()
        return cls(
            challenge=challenge,
            account_id=account_id,
            ceremony=ceremony.value,
            expires_at=now + timedelta(seconds=ttl_seconds),
            ip_address=ip_address,
            user_agent=user_agent,
            created_at=now,
        )
