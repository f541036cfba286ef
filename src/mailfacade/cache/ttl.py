# mailfacade/cache/ttl.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

DAY_SECONDS = 24 * 60 * 60


@dataclass(frozen=True)
class TTLPolicy:
    """
    Cache lifetimes per resource class, in seconds.

    Single emails get a per-entry TTL from email_ttl_for(): recent and unread
    mail is likely to be touched again soon (read, starred, moved) so it
    expires quickly; old read mail is effectively immutable.
    """
    list_ttl: int = 5 * 60
    folder_ttl: int = 60 * 60
    email_ttl: int = 30 * 60          # date unknown

    recent_email_ttl: int = 10 * 60   # younger than recent_age
    week_email_ttl: int = 60 * 60     # younger than week_age
    old_email_ttl: int = 4 * 60 * 60
    recent_age: int = DAY_SECONDS
    week_age: int = 7 * DAY_SECONDS

    unread_divisor: float = 2.0
    unread_floor: int = 5 * 60

    def __post_init__(self) -> None:
        for name in ("list_ttl", "folder_ttl", "email_ttl", "recent_email_ttl", "week_email_ttl", "old_email_ttl"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")
        if self.unread_divisor < 1:
            raise ValueError("unread_divisor must be >= 1")

    def email_ttl_for(
        self,
        *,
        date: Optional[datetime],
        is_read: bool,
        now: Optional[datetime] = None,
    ) -> int:
        if date is None:
            ttl = self.email_ttl
        else:
            now = now or datetime.now(timezone.utc)
            if date.tzinfo is None:
                date = date.replace(tzinfo=timezone.utc)
            age = (now - date).total_seconds()
            if age < self.recent_age:
                ttl = self.recent_email_ttl
            elif age < self.week_age:
                ttl = self.week_email_ttl
            else:
                ttl = self.old_email_ttl

        if not is_read:
            ttl = max(int(ttl / self.unread_divisor), self.unread_floor)
        return ttl
