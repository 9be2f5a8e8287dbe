"""
API routes for ChatRelay.
"""

from chatrelay.api.routes import channels, sessions

__all__ = ["channels", "sessions"]
