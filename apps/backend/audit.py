"""
Audit logging utilities.

Usage:
    await audit_log(
        session=db_session,
        action="ssv.invalid_signature",
        user_id=callback.user_id,
        resource_type="ad_reward_event",
        resource_id=callback.transaction_id,
        details={"key_id": callback.key_id},
        success=False,
        request=request,  # Optional FastAPI Request for IP/UA
    )
"""

from typing import Optional, Dict, Any
from sqlmodel.ext.asyncio.session import AsyncSession
from fastapi import Request
import json
import logging

from models import AuditLog, utc_now

logger = logging.getLogger(__name__)


async def audit_log(
    session: AsyncSession,
    action: str,
    user_id: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    success: bool = True,
    error_message: Optional[str] = None,
    request: Optional[Request] = None,
):
    """
    Create an audit log entry.

    This should never raise - failures are logged but not propagated.
    """
    try:
        ip_address = None
        user_agent = None

        if request is not None and request.client is not None:
            ip_address = request.client.host
        if request is not None:
            user_agent = request.headers.get("user-agent", "")[:500]  # Truncate

        # Redact sensitive info from details if present
        safe_details = None
        if details:
            safe_details = json.dumps(redact_sensitive(details))

        log_entry = AuditLog(
            timestamp=utc_now(),
            user_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=safe_details,
            success=success,
            error_message=error_message,
        )

        session.add(log_entry)
        await session.commit()

    except Exception as e:
        # Never let audit logging break the main flow
        logger.error(f"[AUDIT ERROR] Failed to log {action}: {e}")
        try:
            await session.rollback()
        except Exception as rollback_error:
            logger.error(f"[AUDIT ERROR] Rollback failed after {action}: {rollback_error}")


def redact_sensitive(data: Dict[str, Any]) -> Dict[str, Any]:
    """Redact sensitive fields from audit details."""
    sensitive_keys = {'password', 'token', 'secret', 'api_key', 'signature', 'private_key'}

    def _redact(obj):
        if isinstance(obj, dict):
            return {
                k: '[REDACTED]' if k.lower() in sensitive_keys else _redact(v)
                for k, v in obj.items()
            }
        if isinstance(obj, list):
            return [_redact(item) for item in obj]
        return obj

    return _redact(data)
