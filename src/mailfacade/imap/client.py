# mailfacade/imap/client.py
from __future__ import annotations

import imaplib
import logging
import re
import ssl
from contextlib import contextmanager
from dataclasses import dataclass
from email.message import EmailMessage as PyEmailMessage
from email.parser import BytesParser
from email.policy import default as default_policy
from email.utils import parsedate_to_datetime
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from mailfacade.config import AccountConfig
from mailfacade.errors import AuthError, EmailNotFoundError, MailboxConnectionError, MailboxError
from mailfacade.imap.query import IMAPQuery
from mailfacade.models import (
    Attachment,
    EmailFolder,
    EmailMessage,
    EmailMetadata,
    EmailOperation,
    ListPage,
    OperationResult,
    OperationType,
    SearchQuery,
)
from mailfacade.models.message import DELETED, FLAGGED, SEEN

logger = logging.getLogger(__name__)

REPLACE_ON = (imaplib.IMAP4.abort, TimeoutError, OSError, ssl.SSLError)

HEADER_FIELDS = "SUBJECT FROM TO CC DATE MESSAGE-ID"
METADATA_FETCH = f"(UID FLAGS RFC822.SIZE BODYSTRUCTURE BODY.PEEK[HEADER.FIELDS ({HEADER_FIELDS})])"
MESSAGE_FETCH = "(UID FLAGS RFC822.SIZE BODY.PEEK[])"

_UID_RE = re.compile(rb"UID (\d+)")
_FLAGS_RE = re.compile(rb"FLAGS \(([^)]*)\)")
_SIZE_RE = re.compile(rb"RFC822\.SIZE (\d+)")
_LIST_RE = re.compile(r'\((?P<flags>[^)]*)\) (?P<delim>"[^"]*"|NIL) (?P<name>.+)')
_STATUS_RE = re.compile(r"(MESSAGES|UNSEEN) (\d+)")

_STORE_FLAGS: Dict[OperationType, Tuple[str, str]] = {
    OperationType.MARK_READ: ("+FLAGS", SEEN),
    OperationType.MARK_UNREAD: ("-FLAGS", SEEN),
    OperationType.STAR: ("+FLAGS", FLAGGED),
    OperationType.UNSTAR: ("-FLAGS", FLAGGED),
}


def _format_mailbox_arg(mailbox: str) -> str:
    if mailbox.upper() == "INBOX":
        return "INBOX"
    if mailbox.startswith('"') and mailbox.endswith('"'):
        return mailbox
    escaped = mailbox.replace("\\", "\\\\").replace('"', r"\"")
    return f'"{escaped}"'


def _unquote(s: str) -> str:
    s = s.strip()
    if len(s) >= 2 and s.startswith('"') and s.endswith('"'):
        return s[1:-1].replace(r"\"", '"').replace("\\\\", "\\")
    return s


def _addresses(msg: PyEmailMessage, name: str) -> List[str]:
    header = msg.get(name)
    if header is None:
        return []
    addrs = getattr(header, "addresses", None)
    if addrs:
        return [str(a) for a in addrs]
    return [str(header)] if str(header) else []


def _header_date(msg: PyEmailMessage):
    raw = msg.get("Date")
    if raw is None:
        return None
    try:
        return parsedate_to_datetime(str(raw))
    except (TypeError, ValueError, IndexError):
        return None


def _text_part(msg: PyEmailMessage, subtype: str) -> Optional[str]:
    part = msg.get_body(preferencelist=(subtype,))
    if part is None:
        return None
    try:
        return part.get_content()
    except (LookupError, UnicodeDecodeError, KeyError):
        payload = part.get_payload(decode=True) or b""
        return payload.decode("utf-8", errors="replace")


@dataclass
class ImapSession:
    """
    One logged-in imaplib connection. Blocking; call it from a worker thread
    (see PooledMailbox). Not safe to share between concurrent callers.
    """

    account: AccountConfig
    conn: imaplib.IMAP4
    selected_mailbox: Optional[str] = None
    selected_readonly: Optional[bool] = None

    # -----------------------
    # Connection management
    # -----------------------

    @classmethod
    def connect(cls, account: AccountConfig) -> "ImapSession":
        try:
            conn = (
                imaplib.IMAP4_SSL(account.host, account.port, timeout=account.timeout)
                if account.use_ssl
                else imaplib.IMAP4(account.host, account.port, timeout=account.timeout)
            )
        except REPLACE_ON as e:
            raise MailboxConnectionError(f"IMAP network error: {e}") from e

        try:
            conn.login(account.username, account.password)
        except imaplib.IMAP4.error as e:
            try:
                conn.logout()
            except (imaplib.IMAP4.error, *REPLACE_ON):
                pass
            raise AuthError(f"IMAP login failed for {account.username}: {e}") from e

        logger.debug("IMAP session opened for %s", account.id)
        return cls(account=account, conn=conn)

    def close(self) -> None:
        try:
            self.conn.logout()
        except (imaplib.IMAP4.error, *REPLACE_ON) as e:
            logger.debug("IMAP logout failed: %s", e)

    @contextmanager
    def _translate_errors(self, op: str) -> Iterator[None]:
        try:
            yield
        except MailboxError:
            raise
        except REPLACE_ON as e:
            raise MailboxConnectionError(f"IMAP {op} failed: {e}") from e
        except imaplib.IMAP4.error as e:
            raise MailboxError(f"IMAP {op} failed: {e}") from e

    def _ensure_selected(self, mailbox: str, readonly: bool) -> None:
        """
        Per-connection SELECT cache.
        RW selection satisfies both RW and RO.
        RO satisfies only RO.
        """
        if self.selected_mailbox == mailbox:
            if self.selected_readonly is False:
                return
            if readonly and self.selected_readonly is True:
                return

        typ, data = self.conn.select(_format_mailbox_arg(mailbox), readonly=readonly)
        if typ != "OK":
            self.selected_mailbox = None
            raise MailboxError(f"select({mailbox!r}, readonly={readonly}) failed: {data}")

        self.selected_mailbox = mailbox
        self.selected_readonly = readonly

    # -----------------------
    # SEARCH + FETCH helpers
    # -----------------------

    def _uid_search(self, criteria: str) -> List[str]:
        try:
            criteria.encode("ascii")
            typ, data = self.conn.uid("SEARCH", None, criteria)
        except UnicodeEncodeError:
            typ, data = self.conn.uid("SEARCH", "CHARSET", "UTF-8", criteria.encode("utf-8"))
        if typ != "OK":
            raise MailboxError(f"SEARCH failed: {data}")
        raw = data[0] or b""
        return [x.decode() for x in raw.split() if x]

    def _fetch_metadata(self, uids: Sequence[str]) -> List[EmailMetadata]:
        if not uids:
            return []
        typ, data = self.conn.uid("FETCH", ",".join(uids), METADATA_FETCH)
        if typ != "OK":
            raise MailboxError(f"FETCH failed: {data}")

        by_uid: Dict[str, EmailMetadata] = {}
        for meta, header_bytes in self._iter_fetch_pieces(data):
            m = _UID_RE.search(meta)
            if not m:
                continue
            uid = m.group(1).decode()
            headers = BytesParser(policy=default_policy).parsebytes(header_bytes, headersonly=True)
            by_uid[uid] = EmailMetadata(
                uid=uid,
                subject=str(headers.get("Subject", "")),
                from_addr=str(headers.get("From", "")),
                to=_addresses(headers, "To"),
                cc=_addresses(headers, "Cc"),
                date=_header_date(headers),
                flags=self._parse_flags(meta),
                size=self._parse_size(meta),
                has_attachments=b'"attachment"' in meta.lower(),
            )
        # FETCH answers in server order; keep the caller's order
        return [by_uid[u] for u in uids if u in by_uid]

    @staticmethod
    def _iter_fetch_pieces(data: list) -> Iterator[Tuple[bytes, bytes]]:
        """
        Yield (metadata, literal) pairs from an imaplib FETCH response.
        Items the server sends after the literal (e.g. FLAGS) arrive as a
        separate bytes element and are appended to the metadata.
        """
        i = 0
        while i < len(data):
            item = data[i]
            if isinstance(item, tuple):
                meta, literal = item[0], item[1]
                if i + 1 < len(data) and isinstance(data[i + 1], bytes):
                    meta = meta + b" " + data[i + 1]
                    i += 1
                yield meta, literal
            i += 1

    @staticmethod
    def _parse_flags(meta: bytes) -> List[str]:
        m = _FLAGS_RE.search(meta)
        if not m:
            return []
        return [f.decode() for f in m.group(1).split()]

    @staticmethod
    def _parse_size(meta: bytes) -> int:
        m = _SIZE_RE.search(meta)
        return int(m.group(1)) if m else 0

    def _page(self, uids: List[str], *, limit: int, offset: int, sort_order: str) -> ListPage:
        ordered = list(reversed(uids)) if sort_order == "desc" else list(uids)
        window = ordered[offset : offset + limit]
        return ListPage.slice(self._fetch_metadata(window), total=len(uids), offset=offset, limit=limit)

    # -----------------------
    # Reads
    # -----------------------

    def list_emails(self, folder: str, limit: int, offset: int, sort_order: str) -> ListPage:
        with self._translate_errors("list"):
            self._ensure_selected(folder, readonly=True)
            return self._page(self._uid_search("ALL"), limit=limit, offset=offset, sort_order=sort_order)

    def search_emails(self, query: SearchQuery, folder: str, limit: int, offset: int) -> ListPage:
        criteria = IMAPQuery.from_search(query).build()
        with self._translate_errors("search"):
            self._ensure_selected(folder, readonly=True)
            return self._page(self._uid_search(criteria), limit=limit, offset=offset, sort_order="desc")

    def get_email(self, uid: str, folder: str) -> EmailMessage:
        with self._translate_errors("fetch"):
            self._ensure_selected(folder, readonly=True)
            typ, data = self.conn.uid("FETCH", uid, MESSAGE_FETCH)
            if typ != "OK":
                raise MailboxError(f"FETCH failed: {data}")
            pieces = list(self._iter_fetch_pieces(data))
            if not pieces:
                raise EmailNotFoundError(uid, folder)
            meta, raw = pieces[0]

        msg = BytesParser(policy=default_policy).parsebytes(raw)
        text_body = _text_part(msg, "plain")
        html_body = _text_part(msg, "html")
        attachments = [
            Attachment(
                filename=part.get_filename() or "unnamed",
                content_type=part.get_content_type(),
                size=len(part.get_payload(decode=True) or b""),
                content_id=part.get("Content-ID"),
                disposition=part.get_content_disposition() or "attachment",
            )
            for part in msg.iter_attachments()
        ]
        references = str(msg.get("References", "")).split()

        return EmailMessage(
            uid=uid,
            subject=str(msg.get("Subject", "")),
            from_addr=str(msg.get("From", "")),
            to=_addresses(msg, "To"),
            cc=_addresses(msg, "Cc"),
            date=_header_date(msg),
            flags=self._parse_flags(meta),
            size=self._parse_size(meta) or len(raw),
            has_attachments=bool(attachments),
            headers={k: str(v) for k, v in msg.items()},
            body=text_body or html_body or "",
            text_body=text_body,
            html_body=html_body,
            attachments=attachments,
            message_id=msg.get("Message-ID"),
            in_reply_to=msg.get("In-Reply-To"),
            references=references,
        )

    def list_folders(self) -> List[EmailFolder]:
        with self._translate_errors("list folders"):
            typ, data = self.conn.list()
            if typ != "OK":
                raise MailboxError(f"LIST failed: {data}")

            folders: List[EmailFolder] = []
            for raw in data or []:
                if not raw:
                    continue
                line = raw.decode(errors="ignore") if isinstance(raw, bytes) else str(raw)
                m = _LIST_RE.match(line)
                if not m:
                    continue
                flags = [f for f in m.group("flags").split() if f]
                delim = m.group("delim")
                delimiter = "" if delim == "NIL" else _unquote(delim)
                path = _unquote(m.group("name"))
                name = path.rsplit(delimiter, 1)[-1] if delimiter else path
                folder = EmailFolder(name=name, path=path, delimiter=delimiter, flags=flags)
                if folder.selectable:
                    unread, total = self._status_counts(path)
                    folder = EmailFolder(
                        name=name, path=path, delimiter=delimiter, flags=flags,
                        unread_count=unread, total_count=total,
                    )
                folders.append(folder)
            return folders

    def _status_counts(self, path: str) -> Tuple[Optional[int], Optional[int]]:
        typ, data = self.conn.status(_format_mailbox_arg(path), "(MESSAGES UNSEEN)")
        if typ != "OK" or not data or not data[0]:
            return None, None
        raw = data[0].decode(errors="ignore") if isinstance(data[0], bytes) else str(data[0])
        counts = {k: int(v) for k, v in _STATUS_RE.findall(raw)}
        return counts.get("UNSEEN"), counts.get("MESSAGES")

    # -----------------------
    # Mutations
    # -----------------------

    def perform_operation(self, operation: EmailOperation, folder: str) -> OperationResult:
        if not operation.uids:
            return OperationResult(success=True, processed=0)

        uid_set = ",".join(operation.uids)
        op = operation.type
        with self._translate_errors(op.value):
            self._ensure_selected(folder, readonly=False)

            if op in _STORE_FLAGS:
                mode, flag = _STORE_FLAGS[op]
                self._store(uid_set, mode, [flag])
            elif op is OperationType.ADD_LABEL:
                self._store(uid_set, "+FLAGS", list(operation.labels))
            elif op is OperationType.REMOVE_LABEL:
                self._store(uid_set, "-FLAGS", list(operation.labels))
            elif op is OperationType.DELETE:
                self._store(uid_set, "+FLAGS", [DELETED])
                self._expunge()
            elif op is OperationType.COPY:
                self._check(self.conn.uid("COPY", uid_set, _format_mailbox_arg(operation.target_folder)), "COPY")
            elif op is OperationType.MOVE:
                target = _format_mailbox_arg(operation.target_folder)
                if "MOVE" in getattr(self.conn, "capabilities", ()):
                    self._check(self.conn.uid("MOVE", uid_set, target), "MOVE")
                else:
                    self._check(self.conn.uid("COPY", uid_set, target), "COPY")
                    self._store(uid_set, "+FLAGS", [DELETED])
                    self._expunge()

        logger.info("IMAP %s on %s: %d messages", op.value, folder, len(operation.uids))
        return OperationResult(success=True, processed=len(operation.uids))

    def _store(self, uid_set: str, mode: str, flags: List[str]) -> None:
        self._check(self.conn.uid("STORE", uid_set, mode, f"({' '.join(flags)})"), "STORE")

    def _expunge(self) -> None:
        self._check(self.conn.expunge(), "EXPUNGE")

    @staticmethod
    def _check(response: Tuple[str, list], what: str) -> None:
        typ, data = response
        if typ != "OK":
            raise MailboxError(f"{what} failed: {data}")
