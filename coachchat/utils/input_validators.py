"""
Input validation and sanitization utilities
"""
import re

from coachchat.models.chat_message import KIND_TEXT, MESSAGE_KINDS


# Maximum message length (code points)
MAX_MESSAGE_LENGTH = 2000
MAX_ATTACHMENTS = 10
MAX_ATTACHMENT_URL_LENGTH = 2048
MAX_SEARCH_LENGTH = 100

ATTACHMENT_URL_PATTERN = re.compile(r'^https?://\S+$', re.IGNORECASE)


def validate_message_kind(kind):
    """
    Validate message type
    Returns: (is_valid, error_message)
    """
    if kind not in MESSAGE_KINDS:
        return False, f"Message type must be one of: {', '.join(MESSAGE_KINDS)}"
    return True, None


def validate_message_content(content, kind=KIND_TEXT, max_length=MAX_MESSAGE_LENGTH):
    """
    Validate message content for its type. Text messages need a body; image and
    file messages may carry an empty one.
    Returns: (is_valid, error_message or stripped content)
    """
    if content is None:
        content = ''
    if not isinstance(content, str):
        return False, "Message must be a string"

    content_str = content.strip()

    if kind == KIND_TEXT and len(content_str) == 0:
        return False, "Text messages cannot be empty"

    if len(content_str) > max_length:
        return False, f"Message too long (max {max_length} characters)"

    return True, content_str


def validate_attachments(attachments, kind=KIND_TEXT, max_attachments=MAX_ATTACHMENTS):
    """
    Validate attachment URIs. Image and file messages need at least one.
    Returns: (is_valid, error_message or list of URIs)
    """
    if attachments is None:
        attachments = []
    if not isinstance(attachments, (list, tuple)):
        return False, "Attachments must be a list of URLs"

    if kind != KIND_TEXT and len(attachments) == 0:
        return False, "Image and file messages must include attachments"

    if len(attachments) > max_attachments:
        return False, f"Too many attachments (max {max_attachments})"

    cleaned = []
    for url in attachments:
        if not isinstance(url, str) or len(url) > MAX_ATTACHMENT_URL_LENGTH \
                or not ATTACHMENT_URL_PATTERN.match(url.strip()):
            return False, "Attachment URLs must be valid http(s) URLs"
        cleaned.append(url.strip())

    return True, cleaned


def validate_search_query(query, max_length=MAX_SEARCH_LENGTH):
    """
    Validate a conversation search query
    Returns: (is_valid, error_message or stripped query)
    """
    if not query or not isinstance(query, str) or not query.strip():
        return False, "Search query is required"

    query_str = query.strip()
    if len(query_str) > max_length:
        return False, f"Search query too long (max {max_length} characters)"

    return True, query_str


def parse_user_id(value, field_name='userId'):
    """
    Coerce a user id from a JSON payload or URL
    Returns: (is_valid, error_message or int id)
    """
    if isinstance(value, bool) or value is None:
        return False, f"{field_name} is required"
    try:
        user_id = int(value)
    except (TypeError, ValueError):
        return False, f"{field_name} must be an integer id"
    if user_id <= 0:
        return False, f"{field_name} must be a positive id"
    return True, user_id


def parse_positive_int(value, default, maximum=None, field_name='value'):
    """
    Parse an optional positive integer query parameter
    Returns: (is_valid, error_message or int)
    """
    if value is None or value == '':
        return True, default
    try:
        number = int(value)
    except (TypeError, ValueError):
        return False, f"{field_name} must be an integer"
    if number < 1:
        return False, f"{field_name} must be at least 1"
    if maximum is not None and number > maximum:
        return False, f"{field_name} cannot exceed {maximum}"
    return True, number
