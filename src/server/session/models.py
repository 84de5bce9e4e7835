from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(slots=True)
class SessionInfo:
    id: str
    created_at: int
    updated_at: int
    workspace: str = ""
    user_id: Optional[str] = None
    metadata: Optional[dict[str, Any]] = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "workspace": self.workspace,
        }
        if self.user_id:
            data["userId"] = self.user_id
        if self.metadata is not None:
            data["metadata"] = self.metadata
        return data


# Fields a metadata update may touch; ``id`` and ``created_at`` are fixed at creation.
UPDATABLE_FIELDS = frozenset({"workspace", "user_id", "metadata"})
