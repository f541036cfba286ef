# mailfacade/webapp/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, List, Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from mailfacade.config import Settings, configure_logging
from mailfacade.errors import (
    AuthError,
    EmailNotFoundError,
    MailboxConnectionError,
    MailboxError,
    MailFacadeError,
    PoolExhaustedError,
)
from mailfacade.mailbox import Summarizer
from mailfacade.models import EmailOperation, SearchQuery
from mailfacade.service import CachedEmailService
from mailfacade.webapp.context import AppContext, MailboxFactory, build_context

logger = logging.getLogger(__name__)


class SearchRequest(BaseModel):
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
    flags: List[str] = Field(default_factory=list)
    size_min: Optional[int] = None
    size_max: Optional[int] = None

    limit: int = 50
    offset: int = 0
    use_cache: bool = True

    def to_query(self) -> SearchQuery:
        return SearchQuery(
            text=self.text,
            from_addr=self.from_addr,
            to=self.to,
            subject=self.subject,
            body=self.body,
            date_from=self.date_from,
            date_to=self.date_to,
            has_attachments=self.has_attachments,
            is_read=self.is_read,
            is_starred=self.is_starred,
            flags=tuple(self.flags),
            size_min=self.size_min,
            size_max=self.size_max,
        )


class OperationRequest(BaseModel):
    type: str
    uids: List[str]
    target_folder: Optional[str] = None
    labels: List[str] = Field(default_factory=list)

    def to_operation(self) -> EmailOperation:
        return EmailOperation(
            type=self.type,
            uids=self.uids,
            target_folder=self.target_folder,
            labels=self.labels,
        )


class BatchOperationRequest(BaseModel):
    operations: List[OperationRequest]


def status_for(exc: MailFacadeError) -> int:
    if isinstance(exc, EmailNotFoundError):
        return 404
    if isinstance(exc, AuthError):
        return 401
    if isinstance(exc, (MailboxConnectionError, PoolExhaustedError)):
        return 503
    if isinstance(exc, MailboxError):
        return 502
    return 500


def create_app(
    settings: Optional[Settings] = None,
    *,
    mailbox_factory: Optional[MailboxFactory] = None,
    summarizer: Optional[Summarizer] = None,
    redis_client: Any = None,
) -> FastAPI:
    """
    Build the HTTP app. Settings default to the environment (.env included);
    tests pass explicit settings and an in-memory mailbox factory.
    """
    if settings is None:
        settings = Settings.from_env()
        configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ctx = await build_context(
            settings,
            mailbox_factory=mailbox_factory,
            summarizer=summarizer,
            redis_client=redis_client,
        )
        app.state.ctx = ctx
        try:
            yield
        finally:
            await ctx.close()

    app = FastAPI(lifespan=lifespan)

    def context(request: Request) -> AppContext:
        return request.app.state.ctx

    def service_for(request: Request, account: str) -> CachedEmailService:
        service = context(request).service(account)
        if service is None:
            raise HTTPException(status_code=404, detail="Account not found")
        return service

    @app.exception_handler(MailFacadeError)
    async def mailfacade_error(request: Request, exc: MailFacadeError) -> JSONResponse:
        status = status_for(exc)
        if status >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status, content={"detail": str(exc)})

    @app.exception_handler(ValueError)
    async def value_error(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.get("/api/health")
    async def health(request: Request) -> dict:
        ctx = context(request)
        return {
            "status": "ok",
            "cache_backend": ctx.store.backend_type,
            "accounts": sorted(ctx.services),
        }

    @app.get("/api/stats")
    async def stats(request: Request) -> dict:
        ctx = context(request)
        return {
            "cache": ctx.store.stats().to_dict(),
            "accounts": {acc: service.get_stats() for acc, service in ctx.services.items()},
        }

    @app.get("/api/accounts/{account}/folders")
    async def list_folders(request: Request, account: str, use_cache: bool = True) -> dict:
        service = service_for(request, account)
        folders = await service.list_folders(use_cache=use_cache)
        return {"folders": [f.to_dict() for f in folders]}

    @app.get("/api/accounts/{account}/mailboxes/{mailbox:path}/emails")
    async def list_emails(
        request: Request,
        background: BackgroundTasks,
        account: str,
        mailbox: str,
        limit: int = 50,
        offset: int = 0,
        sort_order: str = "desc",
        use_cache: bool = True,
        prefetch: bool = Query(default=False, description="Warm the cache for likely next reads."),
    ) -> dict:
        service = service_for(request, account)
        result = await service.list_emails(
            folder=mailbox, limit=limit, offset=offset, sort_order=sort_order, use_cache=use_cache
        )
        if prefetch and result.page.emails:
            background.add_task(service.prefetch, None, mailbox, result.page.emails)
        return result.to_dict()

    @app.post("/api/accounts/{account}/mailboxes/{mailbox:path}/search")
    async def search_emails(request: Request, account: str, mailbox: str, payload: SearchRequest) -> dict:
        service = service_for(request, account)
        result = await service.search_emails(
            payload.to_query(),
            folder=mailbox,
            limit=payload.limit,
            offset=payload.offset,
            use_cache=payload.use_cache,
        )
        return result.to_dict()

    @app.get("/api/accounts/{account}/mailboxes/{mailbox:path}/emails/{uid}")
    async def get_email(
        request: Request,
        account: str,
        mailbox: str,
        uid: str,
        use_cache: bool = True,
        include_summary: bool = False,
    ) -> dict:
        """
        Fetch a single email by UID for a given account and mailbox.
        Example:
            GET /api/accounts/work/mailboxes/INBOX/emails/123
        """
        service = service_for(request, account)
        result = await service.get_email(uid, folder=mailbox, use_cache=use_cache, include_summary=include_summary)
        return result.to_dict()

    @app.post("/api/accounts/{account}/mailboxes/{mailbox:path}/operations")
    async def perform_operation(request: Request, account: str, mailbox: str, payload: OperationRequest) -> dict:
        service = service_for(request, account)
        operation = payload.to_operation()
        result = await service.perform_operation(operation, folder=mailbox)
        return {"operation": operation.to_dict(), **result.to_dict()}

    @app.post("/api/accounts/{account}/mailboxes/{mailbox:path}/operations/batch")
    async def batch_operations(
        request: Request, account: str, mailbox: str, payload: BatchOperationRequest
    ) -> dict:
        service = service_for(request, account)
        operations = [op.to_operation() for op in payload.operations]
        result = await service.batch_operations(operations, folder=mailbox)
        return result.to_dict()

    @app.post("/api/accounts/{account}/cache/clear")
    async def clear_cache(request: Request, account: str) -> dict:
        service = service_for(request, account)
        removed = await service.clear_account_cache()
        return {"status": "ok", "account": account, "removed": removed}

    return app
