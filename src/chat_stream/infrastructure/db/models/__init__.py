"""Import all models so Alembic can discover them via Base.metadata."""
from chat_stream.infrastructure.db.models.conversation import ConversationModel
from chat_stream.infrastructure.db.models.message import MessageModel

__all__ = [
    "ConversationModel",
    "MessageModel",
]
