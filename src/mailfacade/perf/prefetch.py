# mailfacade/perf/prefetch.py
from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from mailfacade.models import EmailMetadata

DAY_SECONDS = 24 * 60 * 60


@dataclass(frozen=True)
class PrefetchWeights:
    per_access: int = 2
    unread: int = 10
    attachments: int = 5
    starred: int = 15
    last_day: int = 8
    last_week: int = 4


class PrefetchManager:
    """
    Remembers which emails get opened and ranks the rest of a listing by how
    likely they are to be opened next.
    """

    def __init__(
        self,
        *,
        max_history: int = 50,
        top_k: int = 5,
        weights: PrefetchWeights = PrefetchWeights(),
        clock: Callable[[], float] = time.time,
    ):
        self.max_history = max_history
        self.top_k = top_k
        self.weights = weights
        self._clock = clock
        self._accesses: Dict[str, List[float]] = {}

    def record_access(self, uid: str) -> None:
        history = self._accesses.setdefault(str(uid), [])
        history.append(self._clock())
        if len(history) > self.max_history:
            del history[: len(history) - self.max_history]

    def access_count(self, uid: str) -> int:
        return len(self._accesses.get(str(uid), ()))

    def score(self, email: EmailMetadata, *, now: datetime) -> int:
        w = self.weights
        score = self.access_count(email.uid) * w.per_access
        if not email.is_read:
            score += w.unread
        if email.has_attachments:
            score += w.attachments
        if email.is_starred:
            score += w.starred

        if email.date is not None:
            date = email.date if email.date.tzinfo else email.date.replace(tzinfo=timezone.utc)
            age = (now - date).total_seconds()
            if age < DAY_SECONDS:
                score += w.last_day
            elif age < 7 * DAY_SECONDS:
                score += w.last_week
        return score

    def get_candidates(
        self,
        current_uid: Optional[str],
        emails: Sequence[EmailMetadata],
        *,
        now: Optional[datetime] = None,
        top_k: Optional[int] = None,
    ) -> List[str]:
        """
        Top-K uids to warm, excluding current_uid. Equal scores keep their
        order in `emails`, so the result is deterministic for equal input.
        """
        now = now or datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        scored = [
            (self.score(e, now=now), e.uid)
            for e in emails
            if e.uid != current_uid
        ]
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [uid for _, uid in scored[: top_k if top_k is not None else self.top_k]]

    def clear(self) -> None:
        self._accesses.clear()
