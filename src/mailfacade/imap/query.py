# mailfacade/imap/query.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import List

from mailfacade.models import SearchQuery


def _imap_date(d: date) -> str:
    return d.strftime("%d-%b-%Y")


def _q(s: str) -> str:
    """
    Quote/escape a string for IMAP SEARCH.
    IMAP uses double quotes for string literals; backslash can escape quotes.
    """
    s = s.replace("\\", "\\\\").replace('"', r"\"")
    return f'"{s}"'


@dataclass
class IMAPQuery:
    parts: List[str] = field(default_factory=list)

    # --- basic fields ---
    def from_(self, s: str) -> "IMAPQuery":
        self.parts += ["FROM", _q(s)]
        return self

    def to(self, s: str) -> "IMAPQuery":
        self.parts += ["TO", _q(s)]
        return self

    def subject(self, s: str) -> "IMAPQuery":
        self.parts += ["SUBJECT", _q(s)]
        return self

    def text(self, s: str) -> "IMAPQuery":
        """
        Match in headers OR body text.
        """
        self.parts += ["TEXT", _q(s)]
        return self

    def body(self, s: str) -> "IMAPQuery":
        """
        Match only in body text.
        """
        self.parts += ["BODY", _q(s)]
        return self

    def header(self, name: str, value: str) -> "IMAPQuery":
        self.parts += ["HEADER", _q(name), _q(value)]
        return self

    # --- date filters ---
    def since(self, d: date) -> "IMAPQuery":
        self.parts += ["SINCE", _imap_date(d)]
        return self

    def before(self, d: date) -> "IMAPQuery":
        self.parts += ["BEFORE", _imap_date(d)]
        return self

    # --- size filters ---
    def larger(self, n: int) -> "IMAPQuery":
        self.parts += ["LARGER", str(int(n))]
        return self

    def smaller(self, n: int) -> "IMAPQuery":
        self.parts += ["SMALLER", str(int(n))]
        return self

    # --- flags/status ---
    def seen(self) -> "IMAPQuery":
        self.parts += ["SEEN"]
        return self

    def unseen(self) -> "IMAPQuery":
        self.parts += ["UNSEEN"]
        return self

    def flagged(self) -> "IMAPQuery":
        self.parts += ["FLAGGED"]
        return self

    def unflagged(self) -> "IMAPQuery":
        self.parts += ["UNFLAGGED"]
        return self

    def keyword(self, flag: str) -> "IMAPQuery":
        self.parts += ["KEYWORD", flag]
        return self

    # --- composition helpers ---
    def not_(self, other: "IMAPQuery") -> "IMAPQuery":
        self.parts += ["NOT", f"({other.build()})"]
        return self

    def raw(self, *tokens: str) -> "IMAPQuery":
        """
        Append raw tokens for advanced users, e.g. raw("OR", 'FROM "a"', 'FROM "b"')
        """
        self.parts += list(tokens)
        return self

    def build(self) -> str:
        return " ".join(self.parts) if self.parts else "ALL"

    @classmethod
    def from_search(cls, query: SearchQuery) -> "IMAPQuery":
        """Translate every SearchQuery field into SEARCH criteria (ANDed)."""
        q = cls()
        if query.text:
            q.text(query.text)
        if query.from_addr:
            q.from_(query.from_addr)
        if query.to:
            q.to(query.to)
        if query.subject:
            q.subject(query.subject)
        if query.body:
            q.body(query.body)
        if query.date_from:
            q.since(query.date_from)
        if query.date_to:
            # BEFORE is exclusive; date_to is inclusive
            q.before(query.date_to + timedelta(days=1))
        if query.size_min is not None:
            q.larger(max(query.size_min - 1, 0))
        if query.size_max is not None:
            q.smaller(query.size_max + 1)
        if query.is_read is True:
            q.seen()
        elif query.is_read is False:
            q.unseen()
        if query.is_starred is True:
            q.flagged()
        elif query.is_starred is False:
            q.unflagged()
        if query.has_attachments is True:
            q.header("Content-Type", "multipart/mixed")
        elif query.has_attachments is False:
            q.not_(IMAPQuery().header("Content-Type", "multipart/mixed"))
        for flag in query.flags:
            if flag.startswith("\\"):
                q.raw(flag[1:].upper())
            else:
                q.keyword(flag)
        return q
