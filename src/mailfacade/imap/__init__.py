from mailfacade.imap.query import IMAPQuery
from mailfacade.imap.client import ImapSession

__all__ = ["IMAPQuery", "ImapSession"]
