"""Payment gateway integration.

Handles checkout creation, webhook verification and processing, and Discord
role sync for paid tiers.
"""

from paidroles.payments.checkout import start_checkout
from paidroles.payments.sync import EntitlementSync
from paidroles.payments.webhooks import WebhookProcessor, handle_webhook

__all__ = [
    "EntitlementSync",
    "WebhookProcessor",
    "handle_webhook",
    "start_checkout",
]
