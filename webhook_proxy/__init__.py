"""Webhook ingress proxy that keeps session cookies away from webhook handlers."""

__version__ = "0.1.0"
