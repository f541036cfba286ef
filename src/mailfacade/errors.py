# mailfacade/errors.py
from __future__ import annotations


class MailFacadeError(Exception):
    """Base class for every error raised by mailfacade."""


class ConfigError(MailFacadeError):
    pass


class CacheBackendError(MailFacadeError):
    """
    Raised by RedisCacheStore.ping() when the server cannot be reached.
    create_cache_store catches it and falls back to the memory backend;
    get/set/delete never raise it.
    """


class PoolExhaustedError(MailFacadeError):
    """No idle connection and the pool is at max_size."""


class MailboxError(MailFacadeError):
    """Failure reported by the mailbox (IMAP) side."""


class MailboxConnectionError(MailboxError):
    pass


class AuthError(MailboxError):
    pass


class EmailNotFoundError(MailboxError):
    def __init__(self, uid: str, folder: str):
        super().__init__(f"Email {uid!r} not found in {folder!r}")
        self.uid = uid
        self.folder = folder
