"""
Worker threads for the blocking side of a session.

`cf` subprocesses that hold the environment lock and credential refreshes
block their caller. Coroutines hand them to one process-wide pool instead,
so the event loop keeps serving HTTP calls while a command runs.
"""

import asyncio
import atexit
import functools
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional, TypeVar

from ..config import get_settings

T = TypeVar("T")

WORKER_NAME_PREFIX = "cf-explorer-cli"

_pool: Optional[ThreadPoolExecutor] = None
_pool_guard = threading.Lock()


def get_worker_pool(max_workers: Optional[int] = None) -> ThreadPoolExecutor:
    """Return the process-wide pool, creating it on first use.

    `max_workers` only applies to the call that creates the pool; later
    callers get the existing one. Defaults to `session.thread_pool_workers`.
    """
    global _pool

    pool = _pool
    if pool is not None:
        return pool

    with _pool_guard:
        if _pool is None:
            workers = max_workers or get_settings().session.thread_pool_workers
            _pool = ThreadPoolExecutor(
                max_workers=workers, thread_name_prefix=WORKER_NAME_PREFIX
            )
        return _pool


def shutdown_worker_pool(wait: bool = True) -> None:
    """Stop the pool; the next `get_worker_pool` call starts a fresh one."""
    global _pool

    with _pool_guard:
        pool, _pool = _pool, None
    if pool is not None:
        pool.shutdown(wait=wait)


atexit.register(shutdown_worker_pool)


async def run_in_thread_pool(func: Callable[..., T], *args, **kwargs) -> T:
    """Await `func(*args, **kwargs)` running on a pool worker."""
    loop = asyncio.get_running_loop()
    call = functools.partial(func, *args, **kwargs)
    return await loop.run_in_executor(get_worker_pool(), call)
