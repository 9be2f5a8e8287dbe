"""Application services."""

from chatrelay.services.relay import MessageRelay

__all__ = ["MessageRelay"]
