from mailfacade.models.attachment import Attachment
from mailfacade.models.folder import EmailFolder
from mailfacade.models.message import EmailMessage, EmailMetadata
from mailfacade.models.operation import EmailOperation, OperationResult, OperationType
from mailfacade.models.page import ListPage
from mailfacade.models.search import SearchCachePolicy, SearchQuery

__all__ = [
    "Attachment",
    "EmailFolder",
    "EmailMessage",
    "EmailMetadata",
    "EmailOperation",
    "OperationResult",
    "OperationType",
    "ListPage",
    "SearchCachePolicy",
    "SearchQuery",
]
