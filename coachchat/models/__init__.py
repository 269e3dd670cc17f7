# Models package
from coachchat.models.user import User
from coachchat.models.chat_message import ChatMessage
