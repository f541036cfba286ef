from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence


@dataclass(frozen=True)
class EmailFolder:
    name: str
    path: str
    delimiter: str = "/"
    flags: Sequence[str] = field(default_factory=list)
    unread_count: Optional[int] = None
    total_count: Optional[int] = None

    @property
    def selectable(self) -> bool:
        return not any(f.lower() == r"\noselect" for f in self.flags)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "path": self.path,
            "delimiter": self.delimiter,
            "flags": list(self.flags),
            "unread_count": self.unread_count,
            "total_count": self.total_count,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "EmailFolder":
        return cls(
            name=d["name"],
            path=d.get("path", d["name"]),
            delimiter=d.get("delimiter", "/"),
            flags=list(d.get("flags", [])),
            unread_count=d.get("unread_count"),
            total_count=d.get("total_count"),
        )
