# tests/fake_mailbox.py

from __future__ import annotations

import asyncio
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set

from mailfacade.errors import EmailNotFoundError, MailboxError
from mailfacade.models import (
    EmailFolder,
    EmailMessage,
    EmailOperation,
    ListPage,
    OperationResult,
    OperationType,
    SearchQuery,
)
from mailfacade.models.message import FLAGGED, SEEN


@dataclass
class _StoredMessage:
    msg: EmailMessage
    flags: Set[str]


@dataclass
class FakeMailbox:
    """
    In-memory MailboxService for testing.

    Mirrors the async mailbox surface used by CachedEmailService:
      - list_emails / search_emails (paged, newest uid first for "desc")
      - get_email / list_folders
      - perform_operation (flags, labels, copy, move, delete)

    Every call is counted in `calls`. `fail_next` makes the next call raise,
    `gate` (when set) blocks reads until the event is set.
    """

    account_id: str = "imap.example.com:alice"

    # folder -> uid -> _StoredMessage
    _folders: Dict[str, Dict[str, _StoredMessage]] = field(default_factory=dict)
    _next_uid: int = 1

    calls: Counter = field(default_factory=Counter)
    fail_next: Optional[BaseException] = None
    gate: Optional[asyncio.Event] = None

    # --- internal helpers -------------------------------------------------

    def _ensure_folder(self, name: str) -> Dict[str, _StoredMessage]:
        return self._folders.setdefault(name, {})

    def _alloc_uid(self) -> str:
        uid = self._next_uid
        self._next_uid += 1
        return str(uid)

    async def _enter(self, name: str) -> None:
        self.calls[name] += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_next is not None:
            exc, self.fail_next = self.fail_next, None
            raise exc

    def _snapshot(self, stored: _StoredMessage) -> EmailMessage:
        return replace(stored.msg, flags=sorted(stored.flags))

    # --- test setup -------------------------------------------------------

    def add_message(
        self,
        folder: str = "INBOX",
        *,
        subject: str = "Hello",
        from_addr: str = "bob@example.com",
        body: str = "Hi there",
        date: Optional[datetime] = None,
        flags: Optional[Set[str]] = None,
        has_attachments: bool = False,
    ) -> str:
        uid = self._alloc_uid()
        msg = EmailMessage(
            uid=uid,
            subject=subject,
            from_addr=from_addr,
            to=["alice@example.com"],
            date=date or datetime(2024, 1, int(uid) % 28 + 1, tzinfo=timezone.utc),
            size=len(body),
            has_attachments=has_attachments,
            body=body,
            text_body=body,
            message_id=f"<{uid}@example.com>",
        )
        self._ensure_folder(folder)[uid] = _StoredMessage(msg=msg, flags=set(flags or ()))
        return uid

    def flags_of(self, uid: str, folder: str = "INBOX") -> Set[str]:
        return set(self._folders[folder][uid].flags)

    # --- MailboxService ---------------------------------------------------

    async def list_emails(self, folder: str, limit: int, offset: int, sort_order: str) -> ListPage:
        await self._enter("list_emails")
        stored = sorted(self._ensure_folder(folder).values(), key=lambda s: int(s.msg.uid))
        if sort_order == "desc":
            stored.reverse()
        window = stored[offset : offset + limit]
        return ListPage.slice(
            [self._snapshot(s).metadata() for s in window], total=len(stored), offset=offset, limit=limit
        )

    async def search_emails(self, query: SearchQuery, folder: str, limit: int, offset: int) -> ListPage:
        await self._enter("search_emails")
        matches = [
            s for s in sorted(self._ensure_folder(folder).values(), key=lambda s: -int(s.msg.uid))
            if self._matches(s, query)
        ]
        window = matches[offset : offset + limit]
        return ListPage.slice(
            [self._snapshot(s).metadata() for s in window], total=len(matches), offset=offset, limit=limit
        )

    @staticmethod
    def _matches(stored: _StoredMessage, query: SearchQuery) -> bool:
        msg = stored.msg
        if query.text and query.text.lower() not in (msg.subject + " " + msg.body).lower():
            return False
        if query.subject and query.subject.lower() not in msg.subject.lower():
            return False
        if query.from_addr and query.from_addr.lower() not in msg.from_addr.lower():
            return False
        if query.is_read is not None and (SEEN in stored.flags) != query.is_read:
            return False
        if query.is_starred is not None and (FLAGGED in stored.flags) != query.is_starred:
            return False
        if query.has_attachments is not None and msg.has_attachments != query.has_attachments:
            return False
        return True

    async def get_email(self, uid: str, folder: str) -> EmailMessage:
        await self._enter("get_email")
        stored = self._ensure_folder(folder).get(str(uid))
        if stored is None:
            raise EmailNotFoundError(uid, folder)
        return self._snapshot(stored)

    async def list_folders(self) -> List[EmailFolder]:
        await self._enter("list_folders")
        self._ensure_folder("INBOX")
        return [
            EmailFolder(
                name=name,
                path=name,
                unread_count=sum(1 for s in msgs.values() if SEEN not in s.flags),
                total_count=len(msgs),
            )
            for name, msgs in sorted(self._folders.items())
        ]

    async def perform_operation(self, operation: EmailOperation, folder: str) -> OperationResult:
        await self._enter("perform_operation")
        msgs = self._ensure_folder(folder)
        uids = [u for u in operation.uids if u in msgs]
        op = operation.type

        if op in (OperationType.MARK_READ, OperationType.MARK_UNREAD, OperationType.STAR, OperationType.UNSTAR):
            flag = SEEN if op in (OperationType.MARK_READ, OperationType.MARK_UNREAD) else FLAGGED
            for uid in uids:
                if op in (OperationType.MARK_READ, OperationType.STAR):
                    msgs[uid].flags.add(flag)
                else:
                    msgs[uid].flags.discard(flag)
        elif op in (OperationType.ADD_LABEL, OperationType.REMOVE_LABEL):
            for uid in uids:
                for label in operation.labels:
                    if op is OperationType.ADD_LABEL:
                        msgs[uid].flags.add(label)
                    else:
                        msgs[uid].flags.discard(label)
        elif op in (OperationType.COPY, OperationType.MOVE):
            target = self._ensure_folder(operation.target_folder)
            for uid in uids:
                new_uid = self._alloc_uid()
                src = msgs[uid]
                target[new_uid] = _StoredMessage(msg=replace(src.msg, uid=new_uid), flags=set(src.flags))
                if op is OperationType.MOVE:
                    del msgs[uid]
        elif op is OperationType.DELETE:
            for uid in uids:
                del msgs[uid]
        else:
            raise MailboxError(f"unsupported operation {op.value}")

        return OperationResult(success=True, processed=len(uids))
