# Overview: Messaging gateway; persists chat messages and pushes them to online recipients.

from __future__ import annotations

import logging

from sqlalchemy import and_, func, or_, update

from ..extensions import db
from ..models import Conversation, Message, User
from ..time_utils import utcnow
from ..validation import ForbiddenError, ValidationError
from . import conversation_service, realtime
from .concurrency import run_with_retry

logger = logging.getLogger(__name__)


def _recipient_for(conversation: Conversation, sender: User) -> int:
    other = conversation.other_participant_id(sender.id)
    if other is not None:
        return other
    # Authorized by role: address whichever participant holds the other role.
    for participant in conversation.participants:
        if participant is not None and participant.role != sender.role:
            return participant.id
    raise ForbiddenError("Could not determine the other participant")


def send_message(conversation_id, sender: User, content) -> Message:
    """
    Persist a message and bump the conversation (last message, unread count,
    activity time). The push to the recipient happens after commit and
    never fails the send.
    """
    text = content.strip() if isinstance(content, str) else ""
    if not text:
        raise ValidationError("Message content cannot be empty")

    conversation = conversation_service.get_conversation(conversation_id)
    conversation_service.require_participant(sender, conversation)
    recipient_id = _recipient_for(conversation, sender)
    sender_id = sender.id
    conv_id = conversation.id

    def _op():
        message = Message(
            conversation_id=conv_id,
            sender_id=sender_id,
            recipient_id=recipient_id,
            content=text,
            is_read=False,
        )
        db.session.add(message)
        db.session.flush()

        db.session.execute(
            update(Conversation)
            .where(Conversation.id == conv_id)
            .values(
                last_message_id=message.id,
                unread_count=Conversation.unread_count + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session="fetch")
        )
        db.session.commit()
        return message

    message = run_with_retry(_op)
    logger.info("Message %s sent in conversation %s", message.id, conv_id)

    payload = message.to_dict()
    payload["conversationId"] = conv_id
    realtime.notify_user(recipient_id, realtime.EVENT_NEW_MESSAGE, payload)
    return message


def get_messages(conversation_id, requester: User) -> list[Message]:
    """
    Messages between the two participants, oldest first. Reading marks the
    requester's incoming messages as read and resets the unread counter.
    """
    conversation = conversation_service.get_conversation(conversation_id)
    conversation_service.require_participant(requester, conversation)

    me = requester.id
    other = _recipient_for(conversation, requester)

    messages = (
        db.session.query(Message)
        .filter(or_(
            and_(Message.sender_id == me, Message.recipient_id == other),
            and_(Message.sender_id == other, Message.recipient_id == me),
        ))
        .order_by(Message.created_at.asc(), Message.id.asc())
        .all()
    )

    conv_id = conversation.id

    def _op():
        db.session.execute(
            update(Message)
            .where(
                Message.recipient_id == me,
                Message.sender_id == other,
                Message.is_read.is_(False),
            )
            .values(is_read=True)
            .execution_options(synchronize_session="fetch")
        )
        db.session.execute(
            update(Conversation)
            .where(Conversation.id == conv_id)
            .values(unread_count=0)
            .execution_options(synchronize_session="fetch")
        )
        db.session.commit()

    run_with_retry(_op)
    return messages


def get_unread_count(user: User) -> int:
    return (
        db.session.query(func.count(Message.id))
        .filter(Message.recipient_id == user.id, Message.is_read.is_(False))
        .scalar()
    ) or 0
