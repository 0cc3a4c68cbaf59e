"""One-time recovery code model."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String

from esg_auth.database import Base


class RecoveryCode(Base):
    """
    Backup sign-in code. Only the bcrypt hash is stored.

    Consumed codes keep their row with ``used_at`` set so the audit trail
    survives; they are removed only when the batch is regenerated.
    """

    __tablename__ = "recovery_codes"

    id = Column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        index=True,
    )

    account_id = Column(
        String(36),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    code_hash = Column(String(255), nullable=False, doc="bcrypt hash of the normalised code")

    used_at = Column(DateTime, nullable=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<RecoveryCode(id={self.id}, account_id={self.account_id}, used={self.is_used})>"

    @property
    def is_used(self) -> bool:
        return self.used_at is not None
