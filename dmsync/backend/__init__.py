"""Backend contract and the in-process reference backend."""

from dmsync.backend.base import ChatBackend, Subscription
from dmsync.backend.local import LocalBackend, LocalServer, PushHub

__all__ = ["ChatBackend", "LocalBackend", "LocalServer", "PushHub", "Subscription"]
