"""Streaming event-reduction engine turning the backend feed into a transcript."""

from .approvals import ApprovalRequest, ApprovalSurface
from .correlator import SessionCorrelator
from .dedup import DiffSeenSet
from .dispatcher import EventDispatcher
from .lifecycle import TurnLifecycle, TurnState
from .scheduler import FlushScheduler, ImmediateTickSource, TickSource
from .session import EventSession
from .streams import ChannelKind, StreamBufferManager, StreamEntry

__all__ = [
    "ApprovalRequest",
    "ApprovalSurface",
    "ChannelKind",
    "DiffSeenSet",
    "EventDispatcher",
    "EventSession",
    "FlushScheduler",
    "ImmediateTickSource",
    "SessionCorrelator",
    "StreamBufferManager",
    "StreamEntry",
    "TickSource",
    "TurnLifecycle",
    "TurnState",
]
