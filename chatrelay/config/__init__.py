"""
chatrelay Configuration

Environment-driven settings.
"""

from .schemas import AppSettings, TwilioCredentials
from .settings import get_settings, require_twilio

__all__ = [
    "AppSettings",
    "TwilioCredentials",
    "get_settings",
    "require_twilio",
]
