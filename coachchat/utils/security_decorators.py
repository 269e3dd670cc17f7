"""
Security decorators for access control
"""
from functools import wraps
from flask_login import current_user

from coachchat.errors import ChatNotAllowed, NotFoundError
from coachchat.services.relationships import get_active_user, is_linked


def require_chat_access(f):
    """
    Decorator to ensure the current user may chat with <partner_id>
    (one is the other's assigned trainer).
    Must be used after @login_required
    """
    @wraps(f)
    def decorated_function(partner_id, *args, **kwargs):
        if get_active_user(partner_id) is None:
            raise NotFoundError('User not found')

        if not is_linked(current_user.id, partner_id):
            raise ChatNotAllowed()

        return f(partner_id, *args, **kwargs)

    return decorated_function
