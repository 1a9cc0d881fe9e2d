"""
Event logger utility for authentication events.
"""
from fastapi import Request
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from typing import Optional
import logging

from ..models import AUTH_EVENT_TYPES, AuthEvent, User, utcnow

logger = logging.getLogger(__name__)


ALLOWED_EVENT_TYPES = set(AUTH_EVENT_TYPES)


def client_ip(request: Request) -> Optional[str]:
    """Client address, falling back to the first X-Forwarded-For hop."""
    if request.client and request.client.host:
        return request.client.host
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return None


def log_auth_event(
    event_type: str,
    user: User,
    request: Request,
    db: Session,
    metadata: Optional[dict] = None
) -> None:
    """
    Log an authentication event to the database.

    Args:
        event_type: One of ALLOWED_EVENT_TYPES
        user: User object from database
        request: FastAPI Request object
        db: Database session
        metadata: Optional dictionary of additional context

    Raises:
        ValueError: If event_type is invalid
    """
    if event_type not in ALLOWED_EVENT_TYPES:
        raise ValueError(
            f"Invalid event_type '{event_type}'. Must be one of: {', '.join(sorted(ALLOWED_EVENT_TYPES))}"
        )

    ip_address = client_ip(request)
    user_agent = request.headers.get("user-agent")
    timestamp = utcnow()

    try:
        auth_event = AuthEvent(
            user_id=user.id,
            username=user.user_name,
            event_type=event_type,
            ip_address=ip_address,
            user_agent=user_agent,
            timestamp=timestamp,
            event_metadata=metadata or {}
        )

        db.add(auth_event)
        db.commit()

        logger.info(
            "AUTH %s user_id=%s username=%s ip=%s timestamp=%s",
            event_type, user.id, user.user_name, ip_address, timestamp.isoformat()
        )

    except SQLAlchemyError as e:
        # Logging failure should not break the auth flow
        logger.warning(
            "Failed to log auth event - user_id=%s, event_type=%s, error=%s",
            user.id, event_type, e
        )
        db.rollback()
