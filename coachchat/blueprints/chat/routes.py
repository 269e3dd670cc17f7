from flask import current_app, jsonify, request
from flask_login import current_user, login_required
from coachchat.blueprints.chat import chat_bp
from coachchat.errors import ValidationError
from coachchat.models.chat_message import KIND_TEXT
from coachchat.models.user import User
from coachchat.services import message_store
from coachchat.services.socketio_manager import chat_gateway
from coachchat.utils.input_validators import parse_positive_int, validate_search_query
from coachchat.utils.security_decorators import require_chat_access
from coachchat.utils.timezone_utils import utcnow


def _int_arg(name, default, maximum):
    is_valid, result = parse_positive_int(request.args.get(name), default, maximum, field_name=name)
    if not is_valid:
        raise ValidationError(result)
    return result


def _pagination(page, limit, total):
    pages = (total + limit - 1) // limit
    return {
        'page': page,
        'limit': limit,
        'total': total,
        'pages': pages,
        'hasNext': page < pages,
        'hasPrev': page > 1
    }


@chat_bp.route('/conversations', methods=['GET'])
@login_required
def get_conversations():
    """Recent conversations for the current user"""
    config = current_app.config
    limit = _int_arg('limit', config['CHAT_CONVERSATIONS_LIMIT'], config['CHAT_MAX_CONVERSATIONS_LIMIT'])

    conversations = message_store.recent_conversations(current_user.id, limit)

    return jsonify({
        'success': True,
        'message': 'Conversations retrieved',
        'data': [conversation.to_dict() for conversation in conversations]
    })


@chat_bp.route('/unread', methods=['GET'])
@login_required
def get_unread_count():
    """Unread message count, total and per sender"""
    total = message_store.unread_count_for(current_user.id)
    by_sender = message_store.unread_by_sender(current_user.id)

    senders = {}
    if by_sender:
        senders = {
            user.id: user
            for user in User.query.filter(User.id.in_(list(by_sender))).all()
        }

    return jsonify({
        'success': True,
        'message': 'Unread count retrieved',
        'data': {
            'totalUnread': total,
            'unreadBySender': [
                {
                    'senderId': sender_id,
                    'senderName': senders[sender_id].full_name if sender_id in senders else None,
                    'count': count
                }
                for sender_id, count in sorted(by_sender.items())
            ]
        }
    })


@chat_bp.route('/<int:partner_id>', methods=['GET'])
@login_required
@require_chat_access
def get_messages(partner_id):
    """
    Conversation history with a partner, one page in chronological order.
    Fetching the history marks the partner's messages to the current user as read.
    """
    config = current_app.config
    page = _int_arg('page', 1, None)
    limit = _int_arg('limit', config['CHAT_PAGE_SIZE'], config['CHAT_MAX_PAGE_SIZE'])

    messages = message_store.list_conversation(current_user.id, partner_id, page, limit)
    total = message_store.count_conversation(current_user.id, partner_id)

    marked = message_store.mark_read(partner_id, current_user.id)
    if marked:
        chat_gateway.notify_messages_read(current_user.id, partner_id, marked)

    # Store returns newest first; show the page oldest first
    now = utcnow()
    data = [
        {
            **message.to_dict(current_user_id=current_user.id, include_participants=True),
            **message.timing_dict(now)
        }
        for message in reversed(messages)
    ]

    return jsonify({
        'success': True,
        'message': 'Messages retrieved',
        'data': data,
        'pagination': _pagination(page, limit, total)
    })


@chat_bp.route('/<int:partner_id>', methods=['POST'])
@login_required
@require_chat_access
def send_message(partner_id):
    """Send a message over HTTP; live handles get the same pushes as a socket send"""
    data = request.get_json(silent=True)

    if not isinstance(data, dict):
        raise ValidationError('No data received')

    message = message_store.append_message(
        sender_id=current_user.id,
        receiver_id=partner_id,
        kind=data.get('messageType') or KIND_TEXT,
        body=data.get('message'),
        attachments=data.get('attachments')
    )
    chat_gateway.deliver_new_message(message)

    return jsonify({
        'success': True,
        'message': 'Message sent',
        'data': message.to_dict(current_user_id=current_user.id, include_participants=True)
    }), 201


@chat_bp.route('/<int:partner_id>/read', methods=['PUT'])
@login_required
@require_chat_access
def mark_as_read(partner_id):
    """Mark all messages from a partner as read"""
    marked = message_store.mark_read(partner_id, current_user.id)
    chat_gateway.notify_messages_read(current_user.id, partner_id, marked)

    return jsonify({
        'success': True,
        'message': 'Messages marked as read',
        'data': {
            'markedCount': marked,
            'partnerId': partner_id
        }
    })


@chat_bp.route('/<int:partner_id>/search', methods=['GET'])
@login_required
@require_chat_access
def search_messages(partner_id):
    """Case-insensitive substring search within a conversation"""
    config = current_app.config

    is_valid, query = validate_search_query(request.args.get('query'), config['CHAT_MAX_SEARCH_LENGTH'])
    if not is_valid:
        raise ValidationError(query)

    page = _int_arg('page', 1, None)
    limit = _int_arg('limit', config['CHAT_SEARCH_PAGE_SIZE'], config['CHAT_MAX_SEARCH_PAGE_SIZE'])

    messages = message_store.search(current_user.id, partner_id, query, page, limit)
    total = message_store.count_search(current_user.id, partner_id, query)

    return jsonify({
        'success': True,
        'message': 'Search completed',
        'data': [
            {
                **message.to_dict(current_user_id=current_user.id),
                'highlightedMessage': message.highlight(query)
            }
            for message in messages
        ],
        'pagination': _pagination(page, limit, total),
        'searchQuery': query
    })


@chat_bp.route('/message/<int:message_id>', methods=['DELETE'])
@login_required
def delete_message(message_id):
    """Delete one of the current user's own messages"""
    snapshot = message_store.delete_message(message_id, current_user.id)
    chat_gateway.notify_message_deleted(snapshot)

    return jsonify({
        'success': True,
        'message': 'Message deleted',
        'data': {
            'deletedMessageId': message_id
        }
    })
