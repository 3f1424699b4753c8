"""Webhook ingress for tracker events."""

from flowgate.webhooks.app import create_app, create_webhook_router
from flowgate.webhooks.handler import WebhookHandler

__all__ = ["WebhookHandler", "create_app", "create_webhook_router"]
