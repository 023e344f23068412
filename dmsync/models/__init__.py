from dmsync.models.conversation import Conversation
from dmsync.models.message import Message
from dmsync.models.profile import Profile
from dmsync.models.user import User

__all__ = [
    "Conversation",
    "Message",
    "Profile",
    "User",
]
