"""
Cooperative cancellation.

A CancellationToken is checked at step boundaries (pipeline steps, EM
iterations, candidate fits). LatestRequestRunner implements "latest request
wins": submitting a new request cancels the one in flight, and a result is
only published if its token was never cancelled.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Optional

from kinetikos.core.errors import ComputationCancelled

logger = logging.getLogger(__name__)


class CancellationToken:
    """Thread-safe one-way flag."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise ComputationCancelled("Computation cancelled")


def check(token: Optional[CancellationToken]):
    """raise_if_cancelled for an optional token."""
    if token is not None:
        token.raise_if_cancelled()


class LatestRequestRunner:
    """
    Runs one computation at a time on a background thread.

    The callable receives the request's token as the keyword argument
    `token`. on_result is called only for requests still live at completion.
    """

    def __init__(self, on_result: Optional[Callable[[Any], None]] = None,
                 on_error: Optional[Callable[[BaseException], None]] = None):
        self.on_result = on_result
        self.on_error = on_error
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='kinetikos')
        self._lock = threading.Lock()
        self._token: Optional[CancellationToken] = None
        self.latest_result: Any = None

    def submit(self, fn: Callable[..., Any], *args, **kwargs) -> Future:
        token = CancellationToken()
        with self._lock:
            if self._token is not None:
                self._token.cancel()
            self._token = token

        future = self._executor.submit(fn, *args, token=token, **kwargs)
        future.add_done_callback(lambda f: self._publish(f, token))
        return future

    def _publish(self, future: Future, token: CancellationToken):
        try:
            result = future.result()
        except ComputationCancelled:
            logger.debug("Superseded request cancelled")
            return
        except Exception as e:
            if token.cancelled:
                return
            logger.error("Request failed: %s", e)
            if self.on_error is not None:
                self.on_error(e)
            return

        with self._lock:
            live = not token.cancelled and token is self._token
            if live:
                self.latest_result = result
        if live and self.on_result is not None:
            self.on_result(result)

    def cancel(self):
        with self._lock:
            if self._token is not None:
                self._token.cancel()

    def shutdown(self, wait: bool = True, cancel: bool = False):
        if cancel:
            self.cancel()
        self._executor.shutdown(wait=wait)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.shutdown()
