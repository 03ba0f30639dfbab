"""Paid Discord roles driven by payment-gateway webhooks."""

__version__ = "0.1.0"
