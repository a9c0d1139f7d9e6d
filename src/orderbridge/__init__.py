"""Webhook-driven order-to-delivery bridge."""

__version__ = "0.1.0"
