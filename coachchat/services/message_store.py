"""
Message Store: durable log of trainer/client chat messages and their read state.

Every write is a single statement committed on its own, so atomicity of append and
mark-read comes from the database. Lists are ordered by (created_at, id); the
autoincrement id breaks timestamp ties so pagination never skips or repeats rows.
"""
import logging
from functools import wraps

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import InterfaceError, OperationalError, TimeoutError as PoolTimeoutError

from coachchat import db
from coachchat.errors import ForbiddenError, NotFoundError, TransientStoreError, ValidationError
from coachchat.models.chat_message import ChatMessage, KIND_TEXT
from coachchat.utils.input_validators import (
    validate_attachments,
    validate_message_content,
    validate_message_kind,
)
from coachchat.utils.timezone_utils import utcnow

logger = logging.getLogger(__name__)


def store_operation(f):
    """
    Map storage outages to TransientStoreError after rolling back the session.
    Validation and ownership errors pass through untouched.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except (OperationalError, InterfaceError, PoolTimeoutError) as e:
            db.session.rollback()
            logger.error(f"Message store unavailable during {f.__name__}: {type(e).__name__}: {e}")
            raise TransientStoreError() from e

    return decorated_function


def _paginate(query, page, page_size):
    if page < 1 or page_size < 1:
        raise ValidationError('page and page size must be at least 1')
    return query.offset((page - 1) * page_size).limit(page_size).all()


def _escape_like(value):
    return value.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')


@store_operation
def append_message(sender_id, receiver_id, kind=KIND_TEXT, body='', attachments=None):
    """
    Persist a new unread message.

    Args:
        sender_id: Sending user's ID
        receiver_id: Receiving user's ID
        kind: 'text', 'image' or 'file'
        body: Message text (may be empty for image/file messages)
        attachments: List of http(s) URLs, required for image/file messages

    Returns:
        The created ChatMessage

    Raises:
        ValidationError: self-addressed message or invalid body/attachments
    """
    if sender_id == receiver_id:
        raise ValidationError('You cannot send messages to yourself')

    is_valid, error = validate_message_kind(kind)
    if not is_valid:
        raise ValidationError(error)

    is_valid, result = validate_message_content(
        body, kind, max_length=current_app.config['CHAT_MAX_MESSAGE_LENGTH']
    )
    if not is_valid:
        raise ValidationError(result)
    body = result

    is_valid, result = validate_attachments(
        attachments, kind, max_attachments=current_app.config['CHAT_MAX_ATTACHMENTS']
    )
    if not is_valid:
        raise ValidationError(result)
    attachments = result

    message = ChatMessage(
        sender_id=sender_id,
        receiver_id=receiver_id,
        kind=kind,
        body=body,
        attachments=attachments,
        is_read=False,
        read_at=None,
        created_at=utcnow()
    )
    db.session.add(message)
    db.session.commit()

    logger.debug(f"Stored message {message.id} from {sender_id} to {receiver_id}")
    return message


@store_operation
def list_conversation(user_a_id, user_b_id, page=1, page_size=50):
    """Page of messages between two users, newest first"""
    query = ChatMessage.newest_first(ChatMessage.between(user_a_id, user_b_id))
    return _paginate(query, page, page_size)


@store_operation
def count_conversation(user_a_id, user_b_id):
    return ChatMessage.between(user_a_id, user_b_id).count()


@store_operation
def mark_read(sender_id, receiver_id):
    """
    Mark every unread message from sender to receiver as read.

    Only rows still unread are touched, so a second call returns 0 and readAt is
    never overwritten.

    Returns:
        Number of messages marked as read
    """
    count = ChatMessage.query.filter(
        ChatMessage.sender_id == sender_id,
        ChatMessage.receiver_id == receiver_id,
        ChatMessage.is_read.is_(False)
    ).update(
        {ChatMessage.is_read: True, ChatMessage.read_at: utcnow()},
        synchronize_session='fetch'
    )
    db.session.commit()

    if count:
        logger.debug(f"User {receiver_id} read {count} messages from {sender_id}")
    return count


@store_operation
def unread_count_for(user_id):
    """Total unread messages addressed to a user"""
    return ChatMessage.query.filter(
        ChatMessage.receiver_id == user_id,
        ChatMessage.is_read.is_(False)
    ).count()


@store_operation
def unread_by_sender(user_id):
    """Unread messages addressed to a user, counted per sender: {sender_id: count}"""
    rows = db.session.query(
        ChatMessage.sender_id,
        func.count(ChatMessage.id)
    ).filter(
        ChatMessage.receiver_id == user_id,
        ChatMessage.is_read.is_(False)
    ).group_by(ChatMessage.sender_id).all()

    return {sender_id: count for sender_id, count in rows}


def _search_query(user_a_id, user_b_id, substring):
    pattern = f'%{_escape_like(substring)}%'
    return ChatMessage.between(user_a_id, user_b_id).filter(
        ChatMessage.body.ilike(pattern, escape='\\')
    )


@store_operation
def search(user_a_id, user_b_id, substring, page=1, page_size=20):
    """Case-insensitive substring search within one conversation, newest first"""
    query = ChatMessage.newest_first(_search_query(user_a_id, user_b_id, substring))
    return _paginate(query, page, page_size)


@store_operation
def count_search(user_a_id, user_b_id, substring):
    return _search_query(user_a_id, user_b_id, substring).count()


@store_operation
def delete_message(message_id, requester_id):
    """
    Permanently delete a message. Only its sender may do so.

    Returns:
        Serialized snapshot of the deleted message

    Raises:
        NotFoundError: no such message
        ForbiddenError: requester is not the sender
    """
    message = db.session.get(ChatMessage, message_id)
    if message is None:
        raise NotFoundError('Message not found')

    if message.sender_id != requester_id:
        logger.warning(f"User {requester_id} tried to delete message {message_id} owned by {message.sender_id}")
        raise ForbiddenError()

    snapshot = message.to_dict()
    db.session.delete(message)
    db.session.commit()

    logger.info(f"Message {message_id} deleted by sender {requester_id}")
    return snapshot


@store_operation
def recent_conversations(user_id, limit=10):
    """Most recent conversations for a user (see conversation_index)"""
    from coachchat.services.conversation_index import recent_conversations as build_index
    return build_index(user_id, limit)
