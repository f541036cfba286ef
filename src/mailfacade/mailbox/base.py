# mailfacade/mailbox/base.py
from __future__ import annotations

from typing import Any, Dict, List, Protocol, runtime_checkable

from mailfacade.models import EmailFolder, EmailMessage, EmailOperation, ListPage, OperationResult, SearchQuery


@runtime_checkable
class MailboxService(Protocol):
    """
    The live mailbox for one account. Owns the protocol session; everything
    above it (cache, service, web app) only talks to this surface.
    """

    account_id: str

    async def list_emails(self, folder: str, limit: int, offset: int, sort_order: str) -> ListPage: ...

    async def get_email(self, uid: str, folder: str) -> EmailMessage: ...

    async def search_emails(self, query: SearchQuery, folder: str, limit: int, offset: int) -> ListPage: ...

    async def list_folders(self) -> List[EmailFolder]: ...

    async def perform_operation(self, operation: EmailOperation, folder: str) -> OperationResult: ...


@runtime_checkable
class Summarizer(Protocol):
    """Produces an AI summary for an email; provided by an external service."""

    async def summarize(self, message: EmailMessage) -> Dict[str, Any]: ...
