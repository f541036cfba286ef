from __future__ import annotations
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Attachment:
    """
    Attachment metadata. Content bytes are never carried here so a cached
    EmailMessage stays small.
    """
    filename: str
    content_type: str
    size: int
    content_id: Optional[str] = None
    disposition: str = "attachment"

    def __repr__(self) -> str:
        return (
            f"Attachment("
            f"filename={self.filename!r}, "
            f"content_type={self.content_type!r}, "
            f"size={self.size} bytes)"
        )

    def to_dict(self) -> dict:
        return {
            "filename": self.filename,
            "content_type": self.content_type,
            "size": self.size,
            "content_id": self.content_id,
            "disposition": self.disposition,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Attachment":
        return cls(
            filename=d["filename"],
            content_type=d["content_type"],
            size=int(d.get("size", 0)),
            content_id=d.get("content_id"),
            disposition=d.get("disposition", "attachment"),
        )
