"""Wire protocol spoken with the agent backend."""

from .events import Event, ProtocolDecodeError, decode_event
from .submissions import Submission

__all__ = ["Event", "ProtocolDecodeError", "Submission", "decode_event"]
