"""
Webhook routers.
"""

from .twilio import TWIML_ACK, create_webhook_router

__all__ = ["TWIML_ACK", "create_webhook_router"]
