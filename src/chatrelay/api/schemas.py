"""
Pydantic schemas for API request/response models.

These schemas define the structure of data sent to and received from
the API endpoints. Response models read attributes from the immutable
session records returned by the relay service.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

# ===== Channel Schemas =====


class IncomingMessage(BaseModel):
    """A chat message delivered to a channel."""

    sender_id: str = Field(min_length=1)
    text: str = Field(min_length=1)


class MessageResult(BaseModel):
    """Outcome of delivering a message."""

    status: Literal["completed", "queued"]
    response: Optional[str] = None


class SwitchRequest(BaseModel):
    """Rebind a channel to an existing root session or exchange."""

    target_session_id: str = Field(min_length=1)


class NewSessionRequest(BaseModel):
    """Start a fresh conversation on a channel."""

    sender_id: str = Field(min_length=1)
    working_directory: Optional[str] = None


class ModeUpdate(BaseModel):
    """Change the permission mode of a channel."""

    mode: str


class ModeResponse(BaseModel):
    channel_id: str
    mode: str


# ===== Session Schemas =====


class RootSessionResponse(BaseModel):
    """Root session details."""

    id: int
    session_id: str
    working_directory: str
    system_user: str
    user_prompt: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ExchangeResponse(BaseModel):
    """One exchange in a conversation."""

    id: int
    session_id: str
    root_parent_id: int
    previous_session_id: Optional[str] = None
    ai_response: Optional[str] = None
    user_prompt: Optional[str] = None
    summary: Optional[str] = None
    cost_units: Optional[float] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SessionSummaryResponse(BaseModel):
    """Root session listing entry."""

    session_id: str
    working_directory: str
    system_user: str
    message_count: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SwitchResponse(BaseModel):
    """Binding of a channel after a switch."""

    channel_id: str
    root: RootSessionResponse
    leaf: Optional[ExchangeResponse] = None


class ChannelStateResponse(BaseModel):
    """Conversation and queue state of a channel."""

    channel_id: str
    mode: str
    root: Optional[RootSessionResponse] = None
    leaf: Optional[ExchangeResponse] = None
    message_count: int = 0
    queued_messages: int = 0
    is_processing: bool = False


class ChainResponse(BaseModel):
    """A root session with its exchanges in order."""

    root: RootSessionResponse
    exchanges: list[ExchangeResponse]
    transcript: str
