"""
Bearer token verification for the identity provider.

Tokens are issued by the account service; this module only verifies them. The
``create_access_token`` helper exists for seeding scripts and tests.
"""
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app
from jose import ExpiredSignatureError, JWTError, jwt

from coachchat.errors import AuthenticationError
from coachchat.utils.timezone_utils import utcnow


@dataclass(frozen=True)
class Identity:
    """Verified token subject"""
    subject_id: int
    role: str


def create_access_token(user, expires_delta=None):
    """
    Create a signed access token for a user.

    Args:
        user: User instance
        expires_delta: Optional lifetime, defaults to JWT_EXPIRES_MINUTES

    Returns:
        Encoded JWT string
    """
    config = current_app.config
    if expires_delta is None:
        expires_delta = timedelta(minutes=config['JWT_EXPIRES_MINUTES'])

    to_encode = {
        'sub': str(user.id),
        'email': user.email,
        'role': user.role,
        'iss': config['JWT_ISSUER'],
        'aud': config['JWT_AUDIENCE'],
        'exp': utcnow() + expires_delta,
    }
    return jwt.encode(to_encode, config['JWT_SECRET_KEY'], algorithm=config['JWT_ALGORITHM'])


def verify_token(token):
    """
    Verify a bearer token and return its subject.

    Raises:
        AuthenticationError: token missing, malformed, expired or with a bad subject
    """
    if not token:
        raise AuthenticationError('Authentication token required')

    config = current_app.config
    try:
        payload = jwt.decode(
            token,
            config['JWT_SECRET_KEY'],
            algorithms=[config['JWT_ALGORITHM']],
            audience=config['JWT_AUDIENCE'],
            issuer=config['JWT_ISSUER'],
        )
    except ExpiredSignatureError as exc:
        raise AuthenticationError('Token expired') from exc
    except JWTError as exc:
        raise AuthenticationError('Invalid token') from exc

    try:
        subject_id = int(payload.get('sub'))
    except (TypeError, ValueError) as exc:
        raise AuthenticationError('Invalid token subject') from exc

    return Identity(subject_id=subject_id, role=payload.get('role'))


def extract_bearer_token(header_value):
    """Return the token from an 'Authorization: Bearer <token>' header, or None"""
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != 'bearer':
        return None
    return parts[1]
