"""
Conversation Index: per-user conversation summaries computed from the message store.

Nothing here is persisted. Each call runs one grouping query, so summaries are always
consistent with the stored messages at query time.
"""
from dataclasses import dataclass

from sqlalchemy import case, func, or_

from coachchat import db
from coachchat.models.chat_message import ChatMessage
from coachchat.models.user import User
from coachchat.utils.timezone_utils import isoformat_utc


@dataclass
class Conversation:
    """Summary of one user's conversation with a partner"""
    partner: User
    last_message: ChatMessage
    unread_count: int
    is_last_message_from_self: bool

    @property
    def partner_id(self):
        return self.partner.id

    def to_dict(self):
        return {
            'partnerId': self.partner.id,
            'partnerName': self.partner.full_name,
            'partnerProfilePicture': self.partner.avatar_url,
            'partnerRole': self.partner.role,
            'partnerIsOnline': self.partner.is_online_now(),
            'lastMessageId': self.last_message.id,
            'lastMessage': self.last_message.body,
            'lastMessageType': self.last_message.kind,
            'lastMessageTime': isoformat_utc(self.last_message.created_at),
            'unreadCount': self.unread_count,
            'isLastMessageFromMe': self.is_last_message_from_self
        }


def recent_conversations(user_id, limit=10):
    """
    Most recent conversation with each partner, newest first.

    Args:
        user_id: The user whose conversations to summarize
        limit: Maximum number of conversations

    Returns:
        List of Conversation
    """
    partner_expr = case(
        (ChatMessage.sender_id == user_id, ChatMessage.receiver_id),
        else_=ChatMessage.sender_id
    )

    # Rank each partner's messages so rn == 1 is the latest one
    ranked = db.session.query(
        ChatMessage.id.label('message_id'),
        partner_expr.label('partner_id'),
        func.row_number().over(
            partition_by=partner_expr,
            order_by=(ChatMessage.created_at.desc(), ChatMessage.id.desc())
        ).label('rn')
    ).filter(
        or_(ChatMessage.sender_id == user_id, ChatMessage.receiver_id == user_id)
    ).subquery()

    unread = db.session.query(
        ChatMessage.sender_id.label('partner_id'),
        func.count(ChatMessage.id).label('unread_count')
    ).filter(
        ChatMessage.receiver_id == user_id,
        ChatMessage.is_read.is_(False)
    ).group_by(ChatMessage.sender_id).subquery()

    rows = db.session.query(
        ChatMessage,
        User,
        func.coalesce(unread.c.unread_count, 0)
    ).join(
        ranked, ranked.c.message_id == ChatMessage.id
    ).join(
        User, User.id == ranked.c.partner_id
    ).outerjoin(
        unread, unread.c.partner_id == ranked.c.partner_id
    ).filter(
        ranked.c.rn == 1
    ).order_by(
        ChatMessage.created_at.desc(), ChatMessage.id.desc()
    ).limit(limit).all()

    return [
        Conversation(
            partner=partner,
            last_message=message,
            unread_count=int(unread_count),
            is_last_message_from_self=message.sender_id == user_id
        )
        for message, partner, unread_count in rows
    ]
