# mailfacade/cache/keys.py
from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence
from urllib.parse import quote

# resource classes
EMAIL_LIST = "emails:list"
EMAIL_SEARCH = "emails:search"
EMAIL = "email"
FOLDERS = "folders"


def _quote(part: Any) -> str:
    # safe="" escapes ":", "*", "?", "[" and "]" so scope parts can be used
    # verbatim inside glob patterns.
    return quote(str(part), safe="")


def _encode_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple, set, frozenset)):
        return ",".join(sorted(_quote(v) for v in value))
    return _quote(value)


def encode_params(params: Mapping[str, Any]) -> str:
    """
    name=value pairs sorted by name; None values are dropped so an absent
    parameter and an explicit None produce the same key.
    """
    return "&".join(
        f"{_quote(name)}={_encode_value(params[name])}"
        for name in sorted(params)
        if params[name] is not None
    )


def derive_key(resource_class: str, params: Mapping[str, Any], scope: Sequence[Any] = ()) -> str:
    """
    Build a cache key from a resource class, its scope (account, folder, ...)
    and the query parameters.

        >>> derive_key(EMAIL_LIST, {"offset": 0, "limit": 10}, scope=("acct", "INBOX"))
        'emails:list:acct:INBOX:limit=10&offset=0'
    """
    return ":".join([resource_class, *(_quote(s) for s in scope), encode_params(params)])


def scope_pattern(resource_class: str, scope: Iterable[Any]) -> str:
    """Glob pattern matching every key of resource_class under scope."""
    return ":".join([resource_class, *(_quote(s) for s in scope), "*"])


def email_key(account: str, folder: str, uid: str) -> str:
    return ":".join([EMAIL, _quote(account), _quote(folder), _quote(uid)])


def folders_key(account: str) -> str:
    return ":".join([FOLDERS, _quote(account)])
