from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from mailfacade.models.attachment import Attachment

# RFC 3501 IMAP system flags
SEEN = r"\Seen"
FLAGGED = r"\Flagged"
DELETED = r"\Deleted"
SYSTEM_FLAGS = frozenset({SEEN, FLAGGED, DELETED, r"\Answered", r"\Draft", r"\Recent"})

# RFC 3501 atom-specials; '\' is only valid as the system flag prefix
_ATOM_SPECIALS = frozenset('(){ %*"\\]')


def is_keyword(value: str) -> bool:
    """True if value is a plain IMAP keyword (an atom, no system flag)."""
    return bool(value) and all(0x20 < ord(c) < 0x7F and c not in _ATOM_SPECIALS for c in value)


def check_flag(value: str, *, allow_system: bool = False) -> str:
    if allow_system and value.lower() in {f.lower() for f in SYSTEM_FLAGS}:
        return value
    if not is_keyword(value):
        raise ValueError(f"Invalid IMAP flag: {value!r}")
    return value


def _dt_to_str(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt is not None else None


def _str_to_dt(s: Optional[str]) -> Optional[datetime]:
    if not s:
        return None
    return datetime.fromisoformat(s)


@dataclass(frozen=True)
class EmailMetadata:
    uid: str
    subject: str
    from_addr: str
    to: Sequence[str] = field(default_factory=list)
    cc: Sequence[str] = field(default_factory=list)
    date: Optional[datetime] = None
    flags: Sequence[str] = field(default_factory=list)
    size: int = 0
    has_attachments: bool = False
    labels: Sequence[str] = field(default_factory=list)

    @property
    def is_read(self) -> bool:
        return SEEN in self.flags

    @property
    def is_starred(self) -> bool:
        return FLAGGED in self.flags

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uid": self.uid,
            "subject": self.subject,
            "from_addr": self.from_addr,
            "to": list(self.to),
            "cc": list(self.cc),
            "date": _dt_to_str(self.date),
            "flags": list(self.flags),
            "size": self.size,
            "has_attachments": self.has_attachments,
            "is_read": self.is_read,
            "is_starred": self.is_starred,
            "labels": list(self.labels),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "EmailMetadata":
        return cls(
            uid=str(d["uid"]),
            subject=d.get("subject", ""),
            from_addr=d.get("from_addr", ""),
            to=list(d.get("to", [])),
            cc=list(d.get("cc", [])),
            date=_str_to_dt(d.get("date")),
            flags=list(d.get("flags", [])),
            size=int(d.get("size", 0)),
            has_attachments=bool(d.get("has_attachments", False)),
            labels=list(d.get("labels", [])),
        )


@dataclass(frozen=True)
class EmailMessage(EmailMetadata):
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ""
    text_body: Optional[str] = None
    html_body: Optional[str] = None
    attachments: List[Attachment] = field(default_factory=list)
    message_id: Optional[str] = None
    in_reply_to: Optional[str] = None
    references: Sequence[str] = field(default_factory=list)

    def metadata(self) -> EmailMetadata:
        return EmailMetadata(
            uid=self.uid,
            subject=self.subject,
            from_addr=self.from_addr,
            to=self.to,
            cc=self.cc,
            date=self.date,
            flags=self.flags,
            size=self.size,
            has_attachments=self.has_attachments,
            labels=self.labels,
        )

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d.update(
            {
                "headers": dict(self.headers),
                "body": self.body,
                "text_body": self.text_body,
                "html_body": self.html_body,
                "attachments": [a.to_dict() for a in self.attachments],
                "message_id": self.message_id,
                "in_reply_to": self.in_reply_to,
                "references": list(self.references),
            }
        )
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "EmailMessage":
        meta = EmailMetadata.from_dict(d)
        return cls(
            uid=meta.uid,
            subject=meta.subject,
            from_addr=meta.from_addr,
            to=meta.to,
            cc=meta.cc,
            date=meta.date,
            flags=meta.flags,
            size=meta.size,
            has_attachments=meta.has_attachments,
            labels=meta.labels,
            headers=dict(d.get("headers", {})),
            body=d.get("body", ""),
            text_body=d.get("text_body"),
            html_body=d.get("html_body"),
            attachments=[Attachment.from_dict(a) for a in d.get("attachments", [])],
            message_id=d.get("message_id"),
            in_reply_to=d.get("in_reply_to"),
            references=list(d.get("references", [])),
        )
