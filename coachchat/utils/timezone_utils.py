"""
Timezone utility functions
"""
from datetime import datetime, timezone


def utcnow():
    """Current UTC time as a naive datetime, matching the DateTime columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat_utc(value):
    """Serialize a naive UTC datetime with an explicit Z suffix (None passes through)"""
    if value is None:
        return None
    return value.isoformat(timespec='milliseconds') + 'Z'
