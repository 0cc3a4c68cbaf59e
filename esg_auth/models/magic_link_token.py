"""Magic link tokens for passwordless email sign-in."""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Column, DateTime, String, Text

from esg_auth.database import Base


class DeliveryStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


class MagicLinkToken(Base):
    """Single-use sign-in link. Only sha256 hashes of email and token are indexed."""

    __tablename__ = "magic_link_tokens"

    id = Column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        index=True,
    )

    email = Column(String(255), nullable=False)
    email_hash = Column(String(64), nullable=False, index=True)
    token_hash = Column(String(64), unique=True, nullable=False, index=True)

    redirect_to = Column(String(512), nullable=True)

    requested_ip = Column(String(45), nullable=True, index=True)
    user_agent = Column(Text, nullable=True)

    delivery_status = Column(
        String(16), nullable=False, default=DeliveryStatus.PENDING.value
    )
    delivery_error = Column(Text, nullable=True)

    expires_at = Column(DateTime, nullable=False)
    consumed_at = Column(DateTime, nullable=True)
    consumed_ip = Column(String(45), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<MagicLinkToken(id={self.id}, status='{self.delivery_status}')>"
