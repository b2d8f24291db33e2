"""Operations sent to the backend over its stdin, one JSON object per line."""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal
from uuid import uuid4

Decision = Literal["allow", "deny"]


def decision_for(approved: bool) -> Decision:
    return "allow" if approved else "deny"


@dataclass(frozen=True, slots=True)
class Submission:
    """A single operation addressed to the backend."""

    op: Mapping[str, Any]
    id: str = field(default_factory=lambda: str(uuid4()))

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "op": dict(self.op)}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


def user_input(text: str, images: Iterable[str | Path] = ()) -> Submission:
    """Build a ``user_input`` op; local images are passed by path."""
    items: list[dict[str, Any]] = [{"type": "text", "text": text}]
    for image in images:
        items.append({"type": "local_image", "path": str(image)})
    return Submission(op={"type": "user_input", "items": items})


def interrupt() -> Submission:
    return Submission(op={"type": "interrupt"})


def exec_approval(approval_id: str, approved: bool) -> Submission:
    return Submission(
        op={"type": "exec_approval", "id": approval_id, "decision": decision_for(approved)}
    )


def patch_approval(approval_id: str, approved: bool) -> Submission:
    return Submission(
        op={"type": "patch_approval", "id": approval_id, "decision": decision_for(approved)}
    )


def shutdown() -> Submission:
    return Submission(op={"type": "shutdown"})


__all__ = [
    "Decision",
    "Submission",
    "decision_for",
    "exec_approval",
    "interrupt",
    "patch_approval",
    "shutdown",
    "user_input",
]
