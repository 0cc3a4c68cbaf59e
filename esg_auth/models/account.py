"""Account model shared by end users and admin panel operators."""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, String

from esg_auth.database import Base


class AccountRole(str, Enum):
    """Closed set of roles an account may hold."""

    USER = "USER"
    SUPPORT_ADMIN = "SUPPORT_ADMIN"
    FINANCE_ADMIN = "FINANCE_ADMIN"
    SYSTEM_ADMIN = "SYSTEM_ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"

    @property
    def is_admin(self) -> bool:
        return self is not AccountRole.USER


def normalize_email(email: str) -> str:
    """Canonical form used for storage and every lookup."""
    return email.strip().lower()


class Account(Base):
    """
    Account model for storing authenticable identities.

    End users hold the ``USER`` role; admin panel operators hold one of the
    four admin roles. Accounts are deactivated rather than removed, except
    for the explicit admin deletion operation.
    """

    __tablename__ = "accounts"

    id = Column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        index=True,
        doc="Unique account identifier"
    )

    email = Column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
        doc="Normalised (trimmed, lower-cased) email address"
    )

    display_name = Column(
        String(255),
        nullable=True,
        doc="Display name for WebAuthn"
    )

    role = Column(
        String(32),
        nullable=False,
        default=AccountRole.USER.value,
        doc="AccountRole value"
    )

    is_active = Column(
        Boolean,
        default=True,
        nullable=False,
        doc="Whether the account may authenticate"
    )

    password_hash = Column(
        String(255),
        nullable=True,
        doc="bcrypt hash of the admin panel password, if one is set"
    )

    email_verified_at = Column(DateTime, nullable=True)
    last_login_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        """String representation of account."""
        return f"<Account(id={self.id}, email='{self.email}', role='{self.role}')>"

    @property
    def account_role(self) -> AccountRole:
        return AccountRole(self.role)

    @property
    def is_admin(self) -> bool:
        return self.account_role.is_admin

    def can_authenticate(self) -> bool:
        """Check if account can attempt authentication."""
        return bool(self.is_active)

    def get_webauthn_user_handle(self) -> bytes:
        """Opaque WebAuthn user handle (the account id bytes)."""
        return self.id.encode("utf-8")

    def mark_login(self) -> None:
        now = datetime.utcnow()
        self.last_login_at = now
        if self.email_verified_at is None:
            self.email_verified_at = now
