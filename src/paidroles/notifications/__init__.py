"""Member notifications (Discord DM with email fallback)."""

from paidroles.notifications.dispatcher import NotificationDispatcher, NotificationResult
from paidroles.notifications.email import EmailSender

__all__ = ["EmailSender", "NotificationDispatcher", "NotificationResult"]
