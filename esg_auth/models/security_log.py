"""Security log model for audit trails and security monitoring."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from sqlalchemy import JSON, Column, DateTime, String, Text

from esg_auth.database import Base


class SecurityEventType(str, Enum):
    """Types of security events to log."""

    # Authentication events
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    LOGOUT = "logout"

    # Passkey ceremonies
    REGISTRATION_START = "registration_start"
    REGISTRATION_SUCCESS = "registration_success"
    REGISTRATION_FAILED = "registration_failed"
    PASSKEY_REMOVED = "passkey_removed"
    COUNTER_REGRESSION = "counter_regression"

    # Fallback paths
    RECOVERY_CODES_GENERATED = "recovery_codes_generated"
    RECOVERY_CODE_USED = "recovery_code_used"
    RECOVERY_CODE_FAILED = "recovery_code_failed"
    PASSWORD_SET = "password_set"
    PASSWORD_LOGIN_FAILED = "password_login_failed"
    MAGIC_LINK_REQUESTED = "magic_link_requested"
    MAGIC_LINK_CONSUMED = "magic_link_consumed"

    # Session lifecycle
    SESSIONS_REVOKED = "sessions_revoked"
    INVALID_SESSION = "invalid_session"

    # Admin panel
    ACCESS_DENIED = "access_denied"
    ADMIN_CREATED = "admin_created"
    ADMIN_MODIFIED = "admin_modified"
    ADMIN_DELETED = "admin_deleted"


class SecurityLog(Base):
    """
    Security log model for storing audit trails and security events.

    ``account_id`` is the acting account for admin mutations and the
    subject account otherwise. It is a plain column, not a foreign key, so the
    trail outlives deleted accounts.
    """

    __tablename__ = "security_logs"

    id = Column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        index=True,
        doc="Unique log entry identifier"
    )

    account_id = Column(
        String(36),
        nullable=True,
        index=True,
        doc="Reference to the account (if applicable)"
    )

    event_type = Column(
        String(50),
        nullable=False,
        index=True,
        doc="Type of security event"
    )

    event_description = Column(
        Text,
        nullable=False,
        doc="Detailed description of the event"
    )

    ip_address = Column(
        String(45),  # IPv6 compatible
        nullable=True,
        doc="IP address of the request"
    )

    user_agent = Column(
        Text,
        nullable=True,
        doc="User agent string from the request"
    )

    event_metadata = Column(
        JSON,
        nullable=True,
        doc="Additional event metadata (JSON)"
    )

    risk_level = Column(
        String(20),
        nullable=False,
        default="low",
        doc="Risk level: low, medium, high, critical"
    )

    created_at = Column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
        index=True,
        doc="Event timestamp"
    )

    def __repr__(self) -> str:
        """String representation of security log."""
        return f"<SecurityLog(id={self.id}, event_type='{self.event_type}')>"

    @classmethod
    def create_log(
        cls,
        event_type: SecurityEventType,
        description: str,
        account_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        metadata: Optional[Dict] = None,
        risk_level: str = "low",
    ) -> "SecurityLog":
        """
        Create a new security log entry.

        Args:
            event_type: Type of security event
            description: Detailed description
            account_id: Account ID (if applicable)
            ip_address: Request IP address
            user_agent: Request user agent
            metadata: Additional metadata
            risk_level: Risk level assessment

        Returns:
            SecurityLog: New log entry instance
        """
        return cls(
            event_type=event_type.value,
            event_description=description,
            account_id=account_id,
            ip_address=ip_address,
            user_agent=user_agent,
            event_metadata=metadata or {},
            risk_level=risk_level,
        )

    def is_high_risk(self) -> bool:
        """Check if this is a high-risk event."""
        return self.risk_level in ["high", "critical"]
