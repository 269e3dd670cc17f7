import re
from datetime import timedelta

from markupsafe import Markup, escape

from coachchat import db
from coachchat.utils.timezone_utils import utcnow, isoformat_utc


KIND_TEXT = 'text'
KIND_IMAGE = 'image'
KIND_FILE = 'file'
MESSAGE_KINDS = (KIND_TEXT, KIND_IMAGE, KIND_FILE)

RECENT_WINDOW = timedelta(hours=1)


class ChatMessage(db.Model):
    """Direct message between a trainer and one of their clients"""
    __tablename__ = 'chat_messages'

    # Autoincrement id doubles as the insertion sequence used to break created_at ties
    id = db.Column(db.Integer, primary_key=True)

    sender_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    receiver_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)

    # Message content
    body = db.Column(db.Text, nullable=False, default='')
    kind = db.Column(db.String(20), nullable=False, default=KIND_TEXT)
    attachments = db.Column(db.JSON, nullable=False, default=list)

    # Read state (false -> true only)
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    read_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)

    # Relationships
    sender = db.relationship('User', foreign_keys=[sender_id])
    receiver = db.relationship('User', foreign_keys=[receiver_id])

    __table_args__ = (
        db.CheckConstraint('sender_id <> receiver_id', name='ck_chat_messages_not_self'),
        db.CheckConstraint(
            '(is_read AND read_at IS NOT NULL) OR (NOT is_read AND read_at IS NULL)',
            name='ck_chat_messages_read_at'
        ),
        db.Index('idx_chat_messages_pair_created', 'sender_id', 'receiver_id', 'created_at'),
        db.Index('idx_chat_messages_receiver_unread', 'receiver_id', 'is_read'),
    )

    def __repr__(self):
        return f'<ChatMessage id={self.id} {self.sender_id}->{self.receiver_id}>'

    @staticmethod
    def between(user1_id, user2_id):
        """Query for every message exchanged between two users, either direction"""
        return ChatMessage.query.filter(
            db.or_(
                db.and_(ChatMessage.sender_id == user1_id, ChatMessage.receiver_id == user2_id),
                db.and_(ChatMessage.sender_id == user2_id, ChatMessage.receiver_id == user1_id)
            )
        )

    @staticmethod
    def newest_first(query):
        """Stable reverse-chronological order; id breaks timestamp ties"""
        return query.order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())

    def partner_id(self, current_user_id):
        """Get the other participant's id"""
        return self.receiver_id if self.sender_id == current_user_id else self.sender_id

    def preview(self, length=50):
        """Short body preview for notifications"""
        if not self.body:
            return f'({self.kind})'
        if len(self.body) > length:
            return self.body[:length] + '...'
        return self.body

    def age_in_minutes(self, now=None):
        now = now or utcnow()
        return int((now - self.created_at).total_seconds() // 60)

    def is_from_today(self, now=None):
        """Sent on the current UTC calendar day"""
        return self.created_at.date() == (now or utcnow()).date()

    def is_recent(self, now=None):
        return (now or utcnow()) - self.created_at < RECENT_WINDOW

    def timing_dict(self, now=None):
        """Relative-time fields shown with conversation history"""
        now = now or utcnow()
        return {
            'ageInMinutes': self.age_in_minutes(now),
            'isFromToday': self.is_from_today(now),
            'isRecent': self.is_recent(now)
        }

    def highlight(self, query):
        """
        HTML-escaped body with every case-insensitive occurrence of query
        wrapped in <mark>. The query is matched literally.
        """
        body = self.body or ''
        if not query:
            return str(escape(body))

        pattern = re.compile(re.escape(query), re.IGNORECASE)
        parts = []
        last = 0
        for match in pattern.finditer(body):
            parts.append(escape(body[last:match.start()]))
            parts.append(Markup('<mark>%s</mark>') % match.group(0))
            last = match.end()
        parts.append(escape(body[last:]))
        return str(Markup('').join(parts))

    def to_dict(self, current_user_id=None, include_participants=False):
        data = {
            'id': self.id,
            'senderId': self.sender_id,
            'receiverId': self.receiver_id,
            'message': self.body,
            'messageType': self.kind,
            'attachments': list(self.attachments or []),
            'isRead': self.is_read,
            'readAt': isoformat_utc(self.read_at),
            'createdAt': isoformat_utc(self.created_at)
        }
        if current_user_id is not None:
            data['isFromMe'] = self.sender_id == current_user_id
        if include_participants:
            data['sender'] = self.sender.to_public_dict() if self.sender else None
            data['receiver'] = self.receiver.to_public_dict() if self.receiver else None
        return data
