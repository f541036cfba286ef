from mailfacade.perf.batch import process_batch, process_with_limit
from mailfacade.perf.dedupe import RequestDeduplicator
from mailfacade.perf.monitor import PerformanceMonitor
from mailfacade.perf.pool import ConnectionPool
from mailfacade.perf.prefetch import PrefetchManager, PrefetchWeights
from mailfacade.perf.retry import retry
from mailfacade.perf.timing import Debouncer, Throttle, debounce, throttle

__all__ = [
    "process_batch",
    "process_with_limit",
    "RequestDeduplicator",
    "PerformanceMonitor",
    "ConnectionPool",
    "PrefetchManager",
    "PrefetchWeights",
    "retry",
    "Debouncer",
    "Throttle",
    "debounce",
    "throttle",
]
