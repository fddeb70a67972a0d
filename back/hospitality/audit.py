import json
import logging

from sqlmodel import Session

from .models import AuditLog

logger = logging.getLogger(__name__)


def record(
    session: Session,
    action: str,
    resource_type: str,
    resource_id: int | None,
    user_id: int | None = None,
    changes: dict | None = None,
) -> AuditLog:
    """Add an audit entry to the current transaction."""
    entry = AuditLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        changes=json.dumps(changes, default=str) if changes else None,
    )
    session.add(entry)
    logger.info(f"Audit {action} {resource_type}:{resource_id} by user {user_id}")
    return entry
