"""
Middleware components for Crew Notify.

This module provides:
- RecipientContext: Dataclass representing the acting recipient
- get_recipient_context: FastAPI dependency resolving the X-Recipient-Id header
"""

from crewnotify.src.middleware.recipient import RecipientContext, get_recipient_context

__all__ = [
    "RecipientContext",
    "get_recipient_context",
]
