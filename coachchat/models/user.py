from flask_login import UserMixin
from coachchat import db, login_manager
from coachchat.utils.timezone_utils import utcnow


ROLE_TRAINER = 'trainer'
ROLE_CLIENT = 'client'
ROLES = (ROLE_TRAINER, ROLE_CLIENT)


@login_manager.request_loader
def load_user_from_request(request):
    """Load the user named by a valid Authorization: Bearer token"""
    from coachchat.errors import AuthenticationError
    from coachchat.utils.tokens import extract_bearer_token, verify_token

    token = extract_bearer_token(request.headers.get('Authorization'))
    if not token:
        return None

    try:
        identity = verify_token(token)
    except AuthenticationError:
        return None

    user = db.session.get(User, identity.subject_id)
    if user is None or not user.is_active:
        return None
    return user


class User(UserMixin, db.Model):
    """Trainer or client account, as owned by the account service"""
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)

    # Profile information
    first_name = db.Column(db.String(80))
    last_name = db.Column(db.String(80))
    avatar_url = db.Column(db.String(500))

    # Coaching relationship: a client has at most one trainer
    role = db.Column(db.String(20), nullable=False, default=ROLE_CLIENT, index=True)
    trainer_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)

    # Status
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    # Timestamps
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    trainer = db.relationship('User', remote_side=[id], backref=db.backref('clients', lazy='dynamic'))

    def __repr__(self):
        return f'<User {self.email}>'

    @property
    def full_name(self):
        """Get user's full name"""
        if self.first_name and self.last_name:
            return f'{self.first_name} {self.last_name}'
        if self.first_name:
            return self.first_name
        return self.email.split('@')[0]  # Use email prefix as display name

    def is_trainer(self):
        return self.role == ROLE_TRAINER

    def is_client(self):
        return self.role == ROLE_CLIENT

    def is_online_now(self):
        """Check if user is currently online (real-time via Socket.IO)"""
        from coachchat.services.presence import presence_registry
        return presence_registry.is_online(self.id)

    def to_public_dict(self):
        """Display fields embedded in chat payloads"""
        return {
            'id': self.id,
            'firstName': self.first_name,
            'lastName': self.last_name,
            'fullName': self.full_name,
            'profilePicture': self.avatar_url,
            'role': self.role
        }


@login_manager.unauthorized_handler
def unauthorized():
    """JSON 401 for API requests without a valid bearer token"""
    from flask import jsonify
    from coachchat.errors import AuthenticationError
    error = AuthenticationError()
    return jsonify({'success': False, **error.to_dict()}), error.status_code
