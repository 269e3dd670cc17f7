"""
Flask-SocketIO gateway for real-time trainer/client chat.

Each connection moves CONNECTING -> AUTHENTICATING -> ACTIVE -> CLOSED. A connection
only becomes ACTIVE with a verified bearer token; every action afterwards runs with the
immutable ChatContext produced at that moment. Pushes to other users are best-effort:
the message store is the record clients reconcile against.
"""
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from functools import wraps
from threading import Lock
from typing import Dict, Optional

import sentry_sdk
from flask import current_app
from flask_socketio import SocketIO, ConnectionRefusedError, join_room, leave_room

from coachchat.errors import (
    AuthenticationError,
    ChatError,
    ChatNotAllowed,
    ValidationError,
)
from coachchat.models.chat_message import KIND_TEXT
from coachchat.services import message_store
from coachchat.services.presence import presence_registry
from coachchat.services.relationships import get_active_user, is_linked
from coachchat.utils.input_validators import parse_user_id
from coachchat.utils.timezone_utils import isoformat_utc, utcnow
from coachchat.utils.tokens import extract_bearer_token, verify_token

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    CONNECTING = 'connecting'
    AUTHENTICATING = 'authenticating'
    ACTIVE = 'active'
    CLOSED = 'closed'


ALLOWED_TRANSITIONS = {
    ConnectionState.CONNECTING: {ConnectionState.AUTHENTICATING, ConnectionState.CLOSED},
    ConnectionState.AUTHENTICATING: {ConnectionState.ACTIVE, ConnectionState.CLOSED},
    ConnectionState.ACTIVE: {ConnectionState.CLOSED},
    ConnectionState.CLOSED: set(),
}


@dataclass(frozen=True)
class ChatContext:
    """Authenticated user attached to one connection"""
    user_id: int
    role: str
    display_name: str
    connected_at: datetime


class ChatConnection:
    """State of a single Socket.IO connection"""

    def __init__(self, handle):
        self.handle = handle
        self.state = ConnectionState.CONNECTING
        self.context: Optional[ChatContext] = None
        self.rooms = set()

    def transition(self, new_state):
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal connection transition {self.state.value} -> {new_state.value}")
        self.state = new_state

    def activate(self, context):
        self.context = context
        self.transition(ConnectionState.ACTIVE)


def conversation_room(user1_id, user2_id):
    """Consistent room name for a pair of users"""
    user_ids = sorted([user1_id, user2_id])
    return f"conversation_{user_ids[0]}_{user_ids[1]}"


def user_room(user_id):
    return f"user_{user_id}"


def gateway_action(f):
    """
    Run a client action for a connection. Chat errors go back to the acting
    connection only, as an 'error' event; nothing reaches the other participant.
    """
    @wraps(f)
    def decorated_function(self, handle, *args, **kwargs):
        try:
            return f(self, handle, *args, **kwargs)
        except ChatError as e:
            logger.info(f"Action {f.__name__} rejected for {handle}: {e.code}: {e.message}")
            self.emit_to_handle(handle, 'error', e.to_dict())
        except Exception as e:
            logger.exception(f"Action {f.__name__} failed for {handle}")
            sentry_sdk.capture_exception(e)
            self.emit_to_handle(handle, 'error', {
                'message': 'Internal server error',
                'code': 'INTERNAL_ERROR',
                'retryable': False
            })
        return None

    return decorated_function


class ChatGateway:
    """
    Authenticates connections, authorizes chat actions, persists through the
    message store and fans events out to every live handle of a user.
    """

    def __init__(self, registry=None, clock=time.monotonic):
        self.socketio: Optional[SocketIO] = None
        self.registry = registry or presence_registry
        self.clock = clock
        self.connections: Dict[str, ChatConnection] = {}
        self.lock = Lock()

    def init_socketio(self, socketio):
        self.socketio = socketio
        self.registry.on_transition = self.broadcast_user_status

    # ---------- connection lifecycle ----------

    def open_connection(self, handle, auth=None, headers=None):
        """
        Authenticate a new connection and make it ACTIVE.

        A watcher task closes the connection if it is still not ACTIVE after
        SOCKETIO_AUTH_TIMEOUT seconds, even while token or user lookup is stalled.

        Raises:
            AuthenticationError: missing/invalid token, unknown or inactive user,
                or authentication slower than SOCKETIO_AUTH_TIMEOUT
        """
        connection = ChatConnection(handle)
        with self.lock:
            self.connections[handle] = connection

        connection.transition(ConnectionState.AUTHENTICATING)
        timeout = current_app.config['SOCKETIO_AUTH_TIMEOUT']
        started = self.clock()
        if self.socketio is not None:
            self.socketio.start_background_task(self._expire_unauthenticated, handle, timeout)

        try:
            token = self._extract_token(auth, headers)
            identity = verify_token(token)
            user = get_active_user(identity.subject_id)
            if user is None:
                raise AuthenticationError('User not found or inactive')

            if self.clock() - started > timeout:
                raise AuthenticationError('Authentication timed out')

            context = ChatContext(
                user_id=user.id,
                role=user.role,
                display_name=user.full_name,
                connected_at=utcnow()
            )
            with self.lock:
                if connection.state == ConnectionState.AUTHENTICATING:
                    connection.activate(context)
            if connection.state != ConnectionState.ACTIVE:
                raise AuthenticationError('Authentication timed out')
        except ChatError:
            self._close(connection)
            raise

        join_room(user_room(user.id), sid=handle, namespace='/')
        self.registry.register(user.id, handle)

        logger.info(f"User {user.id} connected on {handle}")
        return context

    def _expire_unauthenticated(self, handle, timeout):
        """Background watcher: drop a connection that never finished authenticating"""
        self.socketio.sleep(timeout)

        with self.lock:
            connection = self.connections.get(handle)
            expired = connection is not None and connection.state != ConnectionState.ACTIVE
            if expired:
                if connection.state != ConnectionState.CLOSED:
                    connection.transition(ConnectionState.CLOSED)
                self.connections.pop(handle, None)

        if expired:
            logger.warning(f"Connection {handle} did not authenticate within {timeout}s; disconnecting")
            self.socketio.server.disconnect(handle, namespace='/')

    def close_connection(self, handle):
        """Tear down a connection; the last handle of a user broadcasts offline"""
        with self.lock:
            connection = self.connections.get(handle)
        if connection is None:
            return

        context = connection.context
        self._close(connection)

        if context is not None:
            self.registry.unregister(context.user_id, handle)
            logger.info(f"User {context.user_id} disconnected from {handle}")

    def _close(self, connection):
        with self.lock:
            if connection.state != ConnectionState.CLOSED:
                connection.transition(ConnectionState.CLOSED)
            self.connections.pop(connection.handle, None)

    @staticmethod
    def _extract_token(auth, headers):
        if isinstance(auth, dict) and auth.get('token'):
            return auth['token']
        if headers is not None:
            return extract_bearer_token(headers.get('Authorization'))
        return None

    def context_for(self, handle):
        """The ChatContext of an ACTIVE connection"""
        with self.lock:
            connection = self.connections.get(handle)
        if connection is None or connection.state != ConnectionState.ACTIVE:
            raise AuthenticationError('Connection is not authenticated')
        return connection.context

    # ---------- emitting ----------

    def emit_to_handle(self, handle, event, payload):
        self.socketio.emit(event, payload, to=handle)

    def emit_to_user(self, user_id, event, payload, exclude_handle=None):
        """
        Push an event to every live handle of a user through their user room.
        With a message queue configured the room spans every worker process.
        """
        self.socketio.emit(event, payload, to=user_room(user_id), skip_sid=exclude_handle)

    def broadcast_user_status(self, user_id, status):
        self.socketio.emit('user_status', {
            'userId': user_id,
            'status': status,
            'timestamp': isoformat_utc(utcnow())
        })

    def deliver_new_message(self, message, exclude_handle=None):
        """
        Push a stored message to the receiver's live handles along with a
        notification, and echo it to the sender's other devices.
        """
        payload = message.to_dict(include_participants=True)
        preview_length = current_app.config['CHAT_NOTIFICATION_PREVIEW_LENGTH']

        self.emit_to_user(message.receiver_id, 'new_message', payload)
        self.emit_to_user(message.receiver_id, 'notification', {
            'type': 'new_message',
            'senderId': message.sender_id,
            'senderName': message.sender.full_name if message.sender else None,
            'message': message.preview(preview_length)
        })
        self.emit_to_user(message.sender_id, 'new_message', payload, exclude_handle=exclude_handle)

        if not self.registry.is_online(message.receiver_id):
            logger.debug(f"User {message.receiver_id} not connected here; message {message.id} waits in store")
        return payload

    def notify_messages_read(self, reader_id, partner_id, count):
        """Tell the partner how many of their messages were just read (possibly 0)"""
        self.emit_to_user(partner_id, 'messages_read', {
            'readerId': reader_id,
            'count': count
        })

    def notify_message_deleted(self, snapshot):
        payload = {
            'messageId': snapshot['id'],
            'senderId': snapshot['senderId'],
            'receiverId': snapshot['receiverId']
        }
        self.emit_to_user(snapshot['receiverId'], 'message_deleted', payload)
        self.emit_to_user(snapshot['senderId'], 'message_deleted', payload)

    # ---------- client actions ----------

    @staticmethod
    def _require_user_id(data, field_name):
        if not isinstance(data, dict):
            raise ValidationError('Payload must be an object')
        is_valid, result = parse_user_id(data.get(field_name), field_name)
        if not is_valid:
            raise ValidationError(result)
        return result

    def _require_link(self, context, partner_id):
        if partner_id == context.user_id:
            raise ValidationError('You cannot chat with yourself')
        if not is_linked(context.user_id, partner_id):
            logger.warning(f"User {context.user_id} is not allowed to chat with {partner_id}")
            raise ChatNotAllowed()

    @gateway_action
    def send_message(self, handle, data):
        context = self.context_for(handle)
        receiver_id = self._require_user_id(data, 'receiverId')
        self._require_link(context, receiver_id)

        message = message_store.append_message(
            sender_id=context.user_id,
            receiver_id=receiver_id,
            kind=data.get('messageType') or KIND_TEXT,
            body=data.get('message'),
            attachments=data.get('attachments')
        )

        payload = message.to_dict(include_participants=True)
        self.emit_to_handle(handle, 'message_sent', {'success': True, 'message': payload})
        self.deliver_new_message(message, exclude_handle=handle)
        return message

    @gateway_action
    def mark_as_read(self, handle, data):
        context = self.context_for(handle)
        sender_id = self._require_user_id(data, 'senderId')
        if sender_id == context.user_id:
            raise ValidationError('You cannot mark your own messages as read')

        count = message_store.mark_read(sender_id, context.user_id)
        self.notify_messages_read(context.user_id, sender_id, count)
        return count

    @gateway_action
    def typing(self, handle, data, is_typing):
        context = self.context_for(handle)
        receiver_id = self._require_user_id(data, 'receiverId')
        self._require_link(context, receiver_id)

        self.emit_to_user(receiver_id, 'user_typing', {
            'userId': context.user_id,
            'isTyping': is_typing
        })

    @gateway_action
    def join_conversation(self, handle, data):
        context = self.context_for(handle)
        partner_id = self._require_user_id(data, 'partnerId')
        self._require_link(context, partner_id)

        room = conversation_room(context.user_id, partner_id)
        join_room(room, sid=handle, namespace='/')
        self._connection(handle).rooms.add(room)
        self.emit_to_handle(handle, 'joined_conversation', {'partnerId': partner_id, 'room': room})
        return room

    @gateway_action
    def leave_conversation(self, handle, data):
        context = self.context_for(handle)
        partner_id = self._require_user_id(data, 'partnerId')

        room = conversation_room(context.user_id, partner_id)
        leave_room(room, sid=handle, namespace='/')
        self._connection(handle).rooms.discard(room)
        self.emit_to_handle(handle, 'left_conversation', {'partnerId': partner_id, 'room': room})
        return room

    def _connection(self, handle):
        with self.lock:
            return self.connections[handle]


# Global gateway instance
chat_gateway = ChatGateway()


def init_socketio_events(socketio: SocketIO):
    """
    Initialize Socket.IO event handlers.

    Args:
        socketio: Flask-SocketIO instance
    """
    from flask import request

    chat_gateway.init_socketio(socketio)

    @socketio.on('connect')
    def handle_connect(auth=None):
        """Authenticate the connection or refuse it outright"""
        try:
            chat_gateway.open_connection(request.sid, auth, request.headers)
        except ChatError as e:
            logger.warning(f"Connection {request.sid} refused: {e.message}")
            raise ConnectionRefusedError(e.message, {'code': e.code, 'retryable': e.retryable})

    @socketio.on('disconnect')
    def handle_disconnect(*args):
        """Handle client disconnection"""
        chat_gateway.close_connection(request.sid)

    @socketio.on('send_message')
    def handle_send_message(data):
        chat_gateway.send_message(request.sid, data)

    @socketio.on('mark_as_read')
    def handle_mark_as_read(data):
        chat_gateway.mark_as_read(request.sid, data)

    @socketio.on('typing_start')
    def handle_typing_start(data):
        chat_gateway.typing(request.sid, data, True)

    @socketio.on('typing_stop')
    def handle_typing_stop(data):
        chat_gateway.typing(request.sid, data, False)

    @socketio.on('join_conversation')
    def handle_join_conversation(data):
        chat_gateway.join_conversation(request.sid, data)

    @socketio.on('leave_conversation')
    def handle_leave_conversation(data):
        chat_gateway.leave_conversation(request.sid, data)
