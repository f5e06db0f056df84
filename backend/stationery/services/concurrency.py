# Overview: Retry/backoff and timer helpers shared by the backend client and the realtime services.

from __future__ import annotations

import threading
import time


def run_with_retry(
    func,
    *,
    retry_on: tuple[type[BaseException], ...],
    attempts: int = 3,
    backoff_base: float = 0.2,
    sleep=time.sleep,
):
    """
    Execute a backend call with retry on transient failures.

    Retries only on the exception types in `retry_on` (transport errors,
    5xx responses); everything else propagates on the first attempt.
    Waits backoff_base * 2**attempt between attempts.
    """
    attempts = max(1, attempts)
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def daemon_timer(delay: float, callback) -> threading.Timer:
    """Default timer factory: a daemon threading.Timer, already started."""
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()
    return timer
