"""Agent backend process and the feed its events are published on."""

from .client import (
    BackendNotRunningError,
    BackendStartError,
    CodexClient,
    build_command,
    build_environment,
)
from .feed import EventFeed

__all__ = [
    "BackendNotRunningError",
    "BackendStartError",
    "CodexClient",
    "EventFeed",
    "build_command",
    "build_environment",
]
