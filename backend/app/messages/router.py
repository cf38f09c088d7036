import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Path, Query, Request, status
from sqlalchemy.orm import Session

from app.auth.deps import get_current_user
from app.auth.models import User
from app.core.config import settings
from app.core.database import get_session
from app.core.limiter import limiter
from app.messages.schemas import (
    ContactRead, MarkReadResponse, MessageCreate, MessageRead, UnreadSummary
)
from app.messages.service import MessageService
from app.realtime.gateway import SessionGateway, get_gateway

router = APIRouter(tags=["messages"])

# Configure logging
logger = logging.getLogger(__name__)


def get_message_service(
    db: Session = Depends(get_session),
    gateway: SessionGateway = Depends(get_gateway),
) -> MessageService:
    return MessageService(db, gateway)


@router.get(
    "",
    response_model=List[MessageRead],
    summary="All messages of the current user",
    description="Sent and received messages, newest first.",
)
def list_messages(
    service: MessageService = Depends(get_message_service),
    current_user: User = Depends(get_current_user),
):
    return service.list_messages(current_user.id)


@router.get(
    "/conversation/{user_id}",
    response_model=List[MessageRead],
    summary="Conversation with one user",
    description="Oldest first. Messages from that user are marked read unless mark_read=false.",
)
def get_conversation(
    user_id: UUID = Path(..., description="Counterpart user id"),
    mark_read: bool = Query(True, description="Mark the counterpart's messages as read"),
    service: MessageService = Depends(get_message_service),
    current_user: User = Depends(get_current_user),
):
    return service.get_conversation(current_user.id, user_id, mark_read=mark_read)


@router.get(
    "/unread",
    response_model=List[MessageRead],
    summary="Unread inbox",
)
def list_unread(
    service: MessageService = Depends(get_message_service),
    current_user: User = Depends(get_current_user),
):
    return service.list_unread(current_user.id)


@router.get(
    "/unread/summary",
    response_model=UnreadSummary,
    summary="Unread badge counts",
    description="Total unread messages and unread messages per sender.",
)
def get_unread_summary(
    service: MessageService = Depends(get_message_service),
    current_user: User = Depends(get_current_user),
):
    return service.unread_summary(current_user.id)


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=MessageRead,
    summary="Send a message",
    description="Stores the message and pushes it to the receiver's live sessions.",
)
@limiter.limit(settings.MESSAGE_SEND_RATE_LIMIT)
async def send_message(
    request: Request,
    payload: MessageCreate = Body(...),
    service: MessageService = Depends(get_message_service),
    current_user: User = Depends(get_current_user),
):
    """
    Send a direct message.

    **Errors:**
    - **404**: Receiver not found
    - **422**: Empty content or malformed receiver id
    - **500**: Message could not be stored (nothing is delivered, resubmit)
    """
    return await service.send_message(current_user, payload.receiver_id, payload.content)


@router.put(
    "/{message_id}/read",
    response_model=MarkReadResponse,
    summary="Mark one message as read",
)
def mark_message_read(
    message_id: int = Path(..., ge=1),
    service: MessageService = Depends(get_message_service),
    current_user: User = Depends(get_current_user),
):
    return service.mark_message_read(current_user.id, message_id)


@router.get(
    "/contacts",
    response_model=List[ContactRead],
    summary="Contacts with unread counts",
    description="Everyone the user exchanged messages with, most recent first.",
)
def list_contacts(
    service: MessageService = Depends(get_message_service),
    current_user: User = Depends(get_current_user),
):
    return service.list_contacts(current_user.id)
