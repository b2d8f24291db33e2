"""Hand approval requests from the backend to an external decision maker."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from ..protocol.events import ApprovalKind, ApprovalRequested, Event
from ..telemetry import log_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ApprovalRequest:
    """Transient description of something the backend wants approved."""

    id: str
    kind: ApprovalKind
    details: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def command(self) -> str | None:
        return self.details.get("command")

    @property
    def cwd(self) -> str | None:
        return self.details.get("cwd")

    @property
    def patch(self) -> str | None:
        return self.details.get("patch")

    @property
    def files(self) -> tuple[str, ...]:
        return tuple(self.details.get("files", ()))


ApprovalCallback = Callable[[ApprovalRequest], None]


def build_approval_request(event: Event) -> ApprovalRequest:
    payload = event.payload
    if not isinstance(payload, ApprovalRequested):
        raise TypeError(f"not an approval event: {event.tag}")
    if payload.kind == "exec":
        details: dict[str, Any] = {"command": payload.command, "cwd": payload.cwd}
    else:
        details = {"patch": payload.patch, "files": payload.files}
    return ApprovalRequest(
        id=event.stream_id, kind=payload.kind, details=MappingProxyType(details)
    )


class ApprovalSurface:
    """Invoke the approval callback once per approval event.

    No retry and no queueing: readiness of the approval UI is the
    callback owner's concern.
    """

    __slots__ = ("_callback",)

    def __init__(self, callback: ApprovalCallback) -> None:
        self._callback = callback

    def on_approval_event(self, event: Event) -> ApprovalRequest:
        request = build_approval_request(event)
        log_event(
            "APPROVAL_REQUESTED",
            {"id": request.id, "kind": request.kind, "details": dict(request.details)},
        )
        try:
            self._callback(request)
        except Exception:
            logger.exception("Approval callback failed for request %s", request.id)
        return request


__all__ = [
    "ApprovalCallback",
    "ApprovalRequest",
    "ApprovalSurface",
    "build_approval_request",
]
