"""
Chat error taxonomy shared by the REST blueprint and the Socket.IO gateway
"""


class ChatError(Exception):
    """Base class for errors reported back to the acting user"""
    code = 'CHAT_ERROR'
    status_code = 400
    retryable = False
    default_message = 'Chat request failed'

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_dict(self):
        return {
            'message': self.message,
            'code': self.code,
            'retryable': self.retryable
        }


class AuthenticationError(ChatError):
    """Missing, invalid or expired bearer token"""
    code = 'NOT_AUTHENTICATED'
    status_code = 401
    default_message = 'Authentication required'


class AuthorizationError(ChatError):
    code = 'INSUFFICIENT_PERMISSIONS'
    status_code = 403
    default_message = 'You do not have permission to perform this action'


class ChatNotAllowed(AuthorizationError):
    """Actor and target have no trainer-client relationship"""
    code = 'CHAT_NOT_ALLOWED'
    default_message = 'You are not allowed to chat with this user'


class ForbiddenError(AuthorizationError):
    """Actor is authenticated but does not own the resource"""
    code = 'FORBIDDEN'
    default_message = 'You can only delete your own messages'


class ValidationError(ChatError):
    code = 'VALIDATION_ERROR'
    status_code = 400
    default_message = 'Invalid input data'


class NotFoundError(ChatError):
    code = 'NOT_FOUND'
    status_code = 404
    default_message = 'Resource not found'


class TransientStoreError(ChatError):
    """Message store unavailable; the client may retry"""
    code = 'STORE_UNAVAILABLE'
    status_code = 503
    retryable = True
    default_message = 'Message store unavailable, please try again'
