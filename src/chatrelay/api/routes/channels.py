"""
Channel API routes.

Endpoints for delivering messages to a channel and managing which
conversation the channel is bound to.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from chatrelay.api.dependencies import get_relay
from chatrelay.api.schemas import (
    ChannelStateResponse,
    ExchangeResponse,
    IncomingMessage,
    MessageResult,
    ModeResponse,
    ModeUpdate,
    NewSessionRequest,
    RootSessionResponse,
    SwitchRequest,
    SwitchResponse,
)
from chatrelay.exceptions import InvalidPermissionMode, SessionNotFound, StorageError
from chatrelay.services.relay import MessageRelay

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/{channel_id}/messages", response_model=MessageResult)
def post_message(
    channel_id: str,
    message: IncomingMessage,
    relay: MessageRelay = Depends(get_relay),
) -> MessageResult:
    """
    Deliver a message to a channel.

    Blocks until the exchange completes. When another exchange is already in
    flight for the channel the message is queued and combined into the next
    one.

    Returns:
        The formatted reply, or status "queued"
    """
    response = relay.handle_incoming(channel_id, message.sender_id, message.text)
    if response is None:
        return MessageResult(status="queued")
    return MessageResult(status="completed", response=response)


@router.post("/{channel_id}/switch", response_model=SwitchResponse)
def switch_session(
    channel_id: str,
    request: SwitchRequest,
    relay: MessageRelay = Depends(get_relay),
) -> SwitchResponse:
    """
    Bind a channel to an existing root session or exchange.

    Raises:
        HTTPException: 404 if the identifier does not resolve
    """
    try:
        root, leaf = relay.switch_to(channel_id, request.target_session_id)
    except SessionNotFound:
        raise HTTPException(
            status_code=404, detail=f"Session {request.target_session_id} not found"
        )
    except StorageError as e:
        raise HTTPException(status_code=503, detail=str(e))

    return SwitchResponse(
        channel_id=channel_id,
        root=RootSessionResponse.model_validate(root),
        leaf=ExchangeResponse.model_validate(leaf) if leaf else None,
    )


@router.post("/{channel_id}/new", response_model=RootSessionResponse, status_code=201)
def new_session(
    channel_id: str,
    request: NewSessionRequest,
    relay: MessageRelay = Depends(get_relay),
) -> RootSessionResponse:
    """Start a fresh conversation on a channel."""
    try:
        root = relay.start_new_session(
            channel_id, request.sender_id, request.working_directory
        )
    except StorageError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return RootSessionResponse.model_validate(root)


@router.put("/{channel_id}/mode", response_model=ModeResponse)
def set_mode(
    channel_id: str,
    update: ModeUpdate,
    relay: MessageRelay = Depends(get_relay),
) -> ModeResponse:
    """
    Set the permission mode of a channel.

    Raises:
        HTTPException: 400 if the mode is unknown
    """
    try:
        mode = relay.set_mode(channel_id, update.mode)
    except InvalidPermissionMode as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return ModeResponse(channel_id=channel_id, mode=mode.value)


@router.get("/{channel_id}", response_model=ChannelStateResponse)
def get_channel(
    channel_id: str,
    relay: MessageRelay = Depends(get_relay),
) -> ChannelStateResponse:
    """Get the conversation and queue state of a channel."""
    try:
        info = relay.session_info(channel_id)
    except StorageError as e:
        raise HTTPException(status_code=503, detail=str(e))

    return ChannelStateResponse(
        channel_id=info.channel_id,
        mode=info.mode.value,
        root=RootSessionResponse.model_validate(info.root) if info.root else None,
        leaf=ExchangeResponse.model_validate(info.leaf) if info.leaf else None,
        message_count=info.message_count,
        queued_messages=info.queued_messages,
        is_processing=info.is_processing,
    )
