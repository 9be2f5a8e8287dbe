"""FastAPI dependencies shared by the route modules."""

from fastapi import Request

from chatrelay.services.relay import MessageRelay


def get_relay(request: Request) -> MessageRelay:
    """Return the relay service attached to the application."""
    return request.app.state.relay
