from mailfacade.cache import EmailCache, MemoryCacheStore, RedisCacheStore, create_cache_store
from mailfacade.config import AccountConfig, Settings
from mailfacade.errors import (
    AuthError,
    EmailNotFoundError,
    MailboxConnectionError,
    MailboxError,
    MailFacadeError,
    PoolExhaustedError,
)
from mailfacade.models import (
    EmailFolder,
    EmailMessage,
    EmailMetadata,
    EmailOperation,
    ListPage,
    OperationResult,
    OperationType,
    SearchQuery,
)
from mailfacade.service import CachedEmailService

__all__ = [
    "EmailCache",
    "MemoryCacheStore",
    "RedisCacheStore",
    "create_cache_store",
    "AccountConfig",
    "Settings",
    "AuthError",
    "EmailNotFoundError",
    "MailboxConnectionError",
    "MailboxError",
    "MailFacadeError",
    "PoolExhaustedError",
    "EmailFolder",
    "EmailMessage",
    "EmailMetadata",
    "EmailOperation",
    "ListPage",
    "OperationResult",
    "OperationType",
    "SearchQuery",
    "CachedEmailService",
]
