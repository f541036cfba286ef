# mailfacade/perf/timing.py
from __future__ import annotations

import asyncio
import inspect
import time
from typing import Any, Callable, Dict, Optional, Tuple


class Throttle:
    """
    Run func at most once per window. The first call fires immediately;
    calls inside the window are dropped (not queued) and return None.
    """

    def __init__(self, func: Callable[..., Any], *, window: float, clock: Callable[[], float] = time.monotonic):
        if window < 0:
            raise ValueError("window must be >= 0")
        self._func = func
        self.window = window
        self._clock = clock
        self._last: Optional[float] = None
        self.dropped = 0

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        now = self._clock()
        if self._last is not None and now - self._last < self.window:
            self.dropped += 1
            return None
        self._last = now
        return self._func(*args, **kwargs)

    def reset(self) -> None:
        self._last = None


def throttle(window: float, *, clock: Callable[[], float] = time.monotonic) -> Callable[[Callable[..., Any]], Throttle]:
    def decorator(func: Callable[..., Any]) -> Throttle:
        return Throttle(func, window=window, clock=clock)
    return decorator


class Debouncer:
    """
    Collapse bursts of calls into one trailing call with the latest
    arguments, wait seconds after the last call. Needs a running event loop;
    coroutine functions are scheduled as tasks.
    """

    def __init__(self, func: Callable[..., Any], *, wait: float):
        if wait < 0:
            raise ValueError("wait must be >= 0")
        self._func = func
        self.wait = wait
        self._handle: Optional[asyncio.TimerHandle] = None
        self._pending_args: Optional[Tuple[Tuple[Any, ...], Dict[str, Any]]] = None
        self._task: Optional[asyncio.Future] = None
        self.calls = 0

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def __call__(self, *args: Any, **kwargs: Any) -> None:
        loop = asyncio.get_running_loop()
        if self._handle is not None:
            self._handle.cancel()
        self._pending_args = (args, kwargs)
        self._handle = loop.call_later(self.wait, self._fire)

    def _fire(self) -> None:
        self._handle = None
        if self._pending_args is None:
            return
        args, kwargs = self._pending_args
        self._pending_args = None
        self.calls += 1
        result = self._func(*args, **kwargs)
        if inspect.isawaitable(result):
            self._task = asyncio.ensure_future(result)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self._pending_args = None

    async def flush(self) -> None:
        """Fire a pending call now and wait for it to finish."""
        if self._handle is not None:
            self._handle.cancel()
            self._fire()
        if self._task is not None:
            task, self._task = self._task, None
            await task


def debounce(wait: float) -> Callable[[Callable[..., Any]], Debouncer]:
    def decorator(func: Callable[..., Any]) -> Debouncer:
        return Debouncer(func, wait=wait)
    return decorator
