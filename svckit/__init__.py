"""Service toolkit: listener runner, shutdown coordination and shared plumbing."""

from svckit.config import BaseServiceSettings
from svckit.logging import setup_logging
from svckit.runner import ListenerError, ListenerRunner, ServerClosed, is_benign
from svckit.shutdown import ShutdownCoordinator, State, wait_first

__all__ = [
    "BaseServiceSettings",
    "ListenerError",
    "ListenerRunner",
    "ServerClosed",
    "ShutdownCoordinator",
    "State",
    "is_benign",
    "setup_logging",
    "wait_first",
]
