from flask import Blueprint

chat_bp = Blueprint('chat', __name__)

from coachchat.blueprints.chat import routes  # noqa: E402,F401
