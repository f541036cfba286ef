from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Sequence

from mailfacade.models.message import check_flag


class OperationType(str, Enum):
    MARK_READ = "mark_read"
    MARK_UNREAD = "mark_unread"
    STAR = "star"
    UNSTAR = "unstar"
    DELETE = "delete"
    MOVE = "move"
    COPY = "copy"
    ADD_LABEL = "add_label"
    REMOVE_LABEL = "remove_label"


# Operations that change folder-level counts (unread/total).
FOLDER_COUNT_CHANGING = frozenset({OperationType.MOVE, OperationType.DELETE})
NEEDS_TARGET = frozenset({OperationType.MOVE, OperationType.COPY})
NEEDS_LABELS = frozenset({OperationType.ADD_LABEL, OperationType.REMOVE_LABEL})


@dataclass(frozen=True)
class EmailOperation:
    type: OperationType
    uids: Sequence[str] = field(default_factory=list)
    target_folder: Optional[str] = None
    labels: Sequence[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        # accept plain strings ("star") as well as the enum
        object.__setattr__(self, "type", OperationType(self.type))
        object.__setattr__(self, "uids", [str(u) for u in self.uids])
        if self.type in NEEDS_TARGET and not self.target_folder:
            raise ValueError(f"target_folder is required for {self.type.value}")
        if self.type in NEEDS_LABELS and not self.labels:
            raise ValueError(f"labels are required for {self.type.value}")
        # labels go into STORE verbatim, so each must be a single keyword atom
        object.__setattr__(self, "labels", [check_flag(label) for label in self.labels])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "uids": list(self.uids),
            "target_folder": self.target_folder,
            "labels": list(self.labels),
        }


@dataclass(frozen=True)
class OperationResult:
    success: bool
    processed: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "processed": self.processed, "error": self.error}
