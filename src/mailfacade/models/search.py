from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Optional, Sequence

from mailfacade.models.message import check_flag


@dataclass(frozen=True)
class SearchQuery:
    """
    Every filter the search endpoint understands. Unset fields are None.

    Fields are enumerated explicitly (no free-form dict) so cache keys and
    IMAP criteria can both be derived exhaustively from the same object.
    """
    text: Optional[str] = None
    from_addr: Optional[str] = None
    to: Optional[str] = None
    subject: Optional[str] = None
    body: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    has_attachments: Optional[bool] = None
    is_read: Optional[bool] = None
    is_starred: Optional[bool] = None
    flags: Sequence[str] = field(default_factory=tuple)
    size_min: Optional[int] = None
    size_max: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "flags", tuple(check_flag(f, allow_system=True) for f in self.flags))
        if self.text is not None:
            normalized = " ".join(self.text.strip().split())
            object.__setattr__(self, "text", normalized or None)
        if self.size_min is not None and self.size_max is not None and self.size_min > self.size_max:
            raise ValueError("size_min must be <= size_max")
        if self.date_from is not None and self.date_to is not None and self.date_from > self.date_to:
            raise ValueError("date_from must be <= date_to")

    @property
    def has_date_range(self) -> bool:
        return self.date_from is not None or self.date_to is not None

    def cache_params(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "from": self.from_addr,
            "to": self.to,
            "subject": self.subject,
            "body": self.body,
            "date_from": self.date_from.isoformat() if self.date_from else None,
            "date_to": self.date_to.isoformat() if self.date_to else None,
            "has_attachments": self.has_attachments,
            "is_read": self.is_read,
            "is_starred": self.is_starred,
            "flags": self.flags,
            "size_min": self.size_min,
            "size_max": self.size_max,
        }


@dataclass(frozen=True)
class SearchCachePolicy:
    """
    Decides whether a search result may be cached.

    Date-range and read-status filters are not cached unless enabled here;
    their result sets change with the clock and with every mark_read.
    """
    cache_date_ranges: bool = False
    cache_read_status: bool = False
    enabled: bool = True

    def is_cacheable(self, query: SearchQuery) -> bool:
        if not self.enabled:
            return False
        if query.has_date_range and not self.cache_date_ranges:
            return False
        if query.is_read is not None and not self.cache_read_status:
            return False
        return True
