"""Audit trail models."""

from typing import Optional
from datetime import datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from models.rewards import utc_now


class AuditLog(SQLModel, table=True):
    """
    Immutable audit log for security-relevant events.

    This is append-only. No UPDATE or DELETE operations allowed.
    """
    __tablename__ = "audit_log"

    id: Optional[int] = Field(default=None, primary_key=True)

    # When
    timestamp: datetime = Field(default_factory=utc_now, index=True, sa_type=DateTime(timezone=True))

    # Who
    user_id: Optional[str] = Field(default=None, index=True, max_length=128)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    # What
    action: str = Field(index=True)  # e.g., "ssv.invalid_signature", "wallet.spend"
    resource_type: Optional[str] = None  # e.g., "ad_reward_event", "wallet"
    resource_id: Optional[str] = None  # e.g., a provider transaction id

    # Details
    details: Optional[str] = None  # JSON string with action-specific data

    # Outcome
    success: bool = True
    error_message: Optional[str] = None
