from dmsync.services.conversation_resolver import ConversationResolver
from dmsync.services.conversation_view import ConversationView
from dmsync.services.directory_service import DirectoryService, filter_profiles
from dmsync.services.message_stream import MessageStream
from dmsync.services.optimistic_send import OptimisticSendController
from dmsync.services.profile_cache import ProfileCache
from dmsync.services.session_manager import SessionManager

__all__ = [
    "ConversationResolver",
    "ConversationView",
    "DirectoryService",
    "MessageStream",
    "OptimisticSendController",
    "ProfileCache",
    "SessionManager",
    "filter_profiles",
]
