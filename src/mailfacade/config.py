# mailfacade/config.py
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from dotenv import load_dotenv

from mailfacade.cache.ttl import TTLPolicy
from mailfacade.errors import ConfigError

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass(frozen=True)
class AccountConfig:
    id: str
    host: str
    username: str
    password: str
    port: int = 993
    use_ssl: bool = True
    timeout: float = 30.0

    @property
    def cache_scope(self) -> str:
        """Identity used in cache keys: same server + same user => same keys."""
        return f"{self.host}:{self.username}"


@dataclass(frozen=True)
class Settings:
    cache_backend: str = "memory"
    redis_url: Optional[str] = None
    redis_key_prefix: str = "mailfacade"
    redis_socket_timeout: float = 3.0

    ttl: TTLPolicy = field(default_factory=TTLPolicy)
    cache_max_size: int = 1000
    cache_eviction_ratio: float = 0.1
    cache_sweep_interval: float = 60.0

    pool_max_size: int = 3
    batch_size: int = 10
    max_concurrent_operations: int = 5
    retry_max_retries: int = 3
    retry_base_delay: float = 1.0
    threadpool_workers: int = 20

    accounts: Dict[str, AccountConfig] = field(default_factory=dict)
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.cache_backend not in ("memory", "redis"):
            raise ConfigError(f"CACHE_BACKEND must be 'memory' or 'redis', got {self.cache_backend!r}")
        if self.cache_backend == "redis" and not self.redis_url:
            raise ConfigError("CACHE_BACKEND=redis requires REDIS_URL")
        if self.cache_max_size < 1:
            raise ConfigError("CACHE_MAX_SIZE must be >= 1")
        if not 0 < self.cache_eviction_ratio <= 1:
            raise ConfigError("CACHE_EVICTION_RATIO must be in (0, 1]")
        if self.pool_max_size < 1:
            raise ConfigError("POOL_MAX_SIZE must be >= 1")
        if self.batch_size < 1 or self.max_concurrent_operations < 1:
            raise ConfigError("BATCH_SIZE and MAX_CONCURRENT_OPERATIONS must be >= 1")
        if self.retry_max_retries < 0 or self.retry_base_delay < 0:
            raise ConfigError("retry settings must be non-negative")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from the process environment (after loading .env),
        or from an explicit mapping in tests.
        """
        if environ is None:
            load_dotenv(override=True)
            environ = os.environ

        def _get(name: str, default: str) -> str:
            value = environ.get(name)
            return value.strip() if value and value.strip() else default

        def _int(name: str, default: int) -> int:
            raw = _get(name, str(default))
            try:
                return int(raw)
            except ValueError as e:
                raise ConfigError(f"{name} must be an integer, got {raw!r}") from e

        def _float(name: str, default: float) -> float:
            raw = _get(name, str(default))
            try:
                return float(raw)
            except ValueError as e:
                raise ConfigError(f"{name} must be a number, got {raw!r}") from e

        redis_url = _get("REDIS_URL", "") or None
        backend = _get("CACHE_BACKEND", "redis" if redis_url else "memory").lower()

        defaults = TTLPolicy()
        ttl = TTLPolicy(
            email_ttl=_int("CACHE_EMAIL_TTL", defaults.email_ttl),
            list_ttl=_int("CACHE_LIST_TTL", defaults.list_ttl),
            folder_ttl=_int("CACHE_FOLDER_TTL", defaults.folder_ttl),
        )

        return cls(
            cache_backend=backend,
            redis_url=redis_url,
            redis_key_prefix=_get("REDIS_KEY_PREFIX", "mailfacade"),
            redis_socket_timeout=_float("REDIS_SOCKET_TIMEOUT_SECONDS", 3.0),
            ttl=ttl,
            cache_max_size=_int("CACHE_MAX_SIZE", 1000),
            cache_eviction_ratio=_float("CACHE_EVICTION_RATIO", 0.1),
            cache_sweep_interval=_float("CACHE_SWEEP_INTERVAL_SECONDS", 60.0),
            pool_max_size=_int("POOL_MAX_SIZE", 3),
            batch_size=_int("BATCH_SIZE", 10),
            max_concurrent_operations=_int("MAX_CONCURRENT_OPERATIONS", 5),
            retry_max_retries=_int("RETRY_MAX_RETRIES", 3),
            retry_base_delay=_float("RETRY_BASE_DELAY", 1.0),
            threadpool_workers=_int("THREADPOOL_WORKERS", 20),
            accounts=parse_accounts(_get("ACCOUNTS", "")),
            log_level=_get("LOG_LEVEL", "INFO").upper(),
        )


def parse_accounts(raw: str) -> Dict[str, AccountConfig]:
    """
    Parse the ACCOUNTS variable: a JSON list of objects with
    id, host, username, password and optional port, use_ssl, timeout.
    """
    if not raw:
        return {}
    try:
        items = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigError(f"ACCOUNTS is not valid JSON: {e}") from e
    if not isinstance(items, list):
        raise ConfigError("ACCOUNTS must be a JSON list")

    accounts: Dict[str, AccountConfig] = {}
    for item in items:
        try:
            acc = AccountConfig(
                id=str(item["id"]),
                host=item["host"],
                username=item["username"],
                password=item["password"],
                port=int(item.get("port", 993)),
                use_ssl=bool(item.get("use_ssl", True)),
                timeout=float(item.get("timeout", 30.0)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"Malformed ACCOUNTS entry: {e}") from e
        if acc.id in accounts:
            raise ConfigError(f"Duplicate account id in ACCOUNTS: {acc.id}")
        accounts[acc.id] = acc
    return accounts


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
