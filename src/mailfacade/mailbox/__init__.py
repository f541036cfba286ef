from mailfacade.mailbox.base import MailboxService, Summarizer
from mailfacade.mailbox.pooled import PooledMailbox

__all__ = ["MailboxService", "Summarizer", "PooledMailbox"]
