"""Change notifications produced by the folder watcher."""

from __future__ import annotations

import enum
from dataclasses import dataclass


class ChangeKind(enum.Enum):
    """What happened to a file."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


@dataclass(frozen=True)
class ChangeEvent:
    """A single change to a file under the watch root.

    ``path`` is relative to the watch root and always uses forward slashes.
    """

    path: str
    kind: ChangeKind

    @property
    def is_delete(self) -> bool:
        return self.kind is ChangeKind.DELETED

    def __str__(self) -> str:
        return f"{self.kind.value} {self.path}"
