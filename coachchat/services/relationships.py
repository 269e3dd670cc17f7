"""
Coach-assignment checks gating who may chat with whom
"""
from coachchat import db
from coachchat.models.user import User
from coachchat.services.message_store import store_operation


@store_operation
def get_active_user(user_id):
    """Return the active user with this id, or None"""
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        return None
    return user


@store_operation
def is_linked(user_a_id, user_b_id):
    """
    Check the trainer-client relationship between two users.

    Two users may chat iff one is a trainer and the other is a client assigned
    to that trainer. Missing or deactivated accounts are never linked.

    Args:
        user_a_id: First user's ID
        user_b_id: Second user's ID

    Returns:
        True if the users are linked, False otherwise
    """
    if user_a_id == user_b_id:
        return False

    user_a = get_active_user(user_a_id)
    user_b = get_active_user(user_b_id)
    if user_a is None or user_b is None:
        return False

    if user_a.is_trainer() and user_b.is_client():
        return user_b.trainer_id == user_a.id

    if user_a.is_client() and user_b.is_trainer():
        return user_a.trainer_id == user_b.id

    return False
