from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from mailfacade.models.message import EmailMetadata


@dataclass(frozen=True)
class ListPage:
    """One page of a folder listing or search result."""
    emails: List[EmailMetadata] = field(default_factory=list)
    total: int = 0
    has_more: bool = False
    next_offset: Optional[int] = None

    @classmethod
    def slice(cls, emails: List[EmailMetadata], *, total: int, offset: int, limit: int) -> "ListPage":
        has_more = offset + limit < total
        return cls(
            emails=emails,
            total=total,
            has_more=has_more,
            next_offset=offset + limit if has_more else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "emails": [e.to_dict() for e in self.emails],
            "total": self.total,
            "has_more": self.has_more,
            "next_offset": self.next_offset,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ListPage":
        return cls(
            emails=[EmailMetadata.from_dict(e) for e in d.get("emails", [])],
            total=int(d.get("total", 0)),
            has_more=bool(d.get("has_more", False)),
            next_offset=d.get("next_offset"),
        )
