"""Dedicated worker pool for blocking external-process calls."""

import asyncio
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, TypeVar

from audiohub.services.media.exceptions import DispatchError, MediaException

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProcessDispatcher:
    """Runs blocking callables off the event loop on a private thread pool.

    The pool is separate from the framework's default thread pool so that a
    slow ffmpeg run only competes with other ffmpeg runs.
    """

    def __init__(self, max_workers: int = 4):
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="media-proc"
        )

    async def run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run ``func`` on the pool and await its result.

        Pipeline exceptions raised by ``func`` propagate unchanged; any other
        failure is reported as a DispatchError.
        """
        loop = asyncio.get_running_loop()
        call = functools.partial(func, *args, **kwargs)
        name = getattr(func, "__name__", repr(func))
        future = loop.run_in_executor(self._executor, call)
        try:
            return await asyncio.shield(future)
        except MediaException:
            raise
        except asyncio.CancelledError:
            # The worker thread cannot be interrupted; release what it produces.
            future.add_done_callback(functools.partial(_release_abandoned, name))
            raise
        except Exception as e:
            logger.error(
                "Dispatched task failed",
                extra={"task": name, "error": str(e), "error_type": type(e).__name__},
                exc_info=True,
            )
            raise DispatchError(f"{name} task failed: {e}") from e

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)


def _release_abandoned(name: str, future: "asyncio.Future[Any]") -> None:
    """Release staged output of a task whose caller was cancelled."""
    if future.cancelled() or future.exception() is not None:
        return
    release = getattr(future.result(), "release", None)
    if callable(release):
        logger.info("Releasing output of abandoned task", extra={"task": name})
        release()
