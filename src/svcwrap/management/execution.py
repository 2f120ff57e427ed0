"""Service execution context: the thread running the service's blocking start()."""

import asyncio
import logging
import threading
from typing import Callable

from svcwrap.errors import ServiceFault


class ServiceThread(threading.Thread):
    """Runs ``target`` then ``on_return`` on a dedicated daemon thread.

    Completion is reported to the event loop that created the thread, so the
    supervisor can wait on it with a bounded, non-blocking join. If ``target``
    raises, ``on_return`` is skipped and the error is kept for the supervisor to
    re-raise as ServiceFault.
    """

    def __init__(
        self,
        target: Callable[[], object],
        on_return: Callable[[], object] | None = None,
        name: str = "service",
        loop: asyncio.AbstractEventLoop | None = None
    ):
        super().__init__(name=name, daemon=True)
        self._target_fn = target
        self._on_return = on_return
        self._loop = loop or asyncio.get_running_loop()
        self._finished: asyncio.Future = self._loop.create_future()
        self.logger = logging.getLogger("svc")
        self.error: BaseException | None = None
        self.killed = False

    def run(self):
        try:
            self._target_fn()
            if self._on_return is not None:
                self._on_return()
        except BaseException as e:
            self.error = e
            self.logger.error(f"service {self.name} raised: {e!r}", exc_info=True)
        finally:
            self._notify_finished()

    def _notify_finished(self):
        if self._loop.is_closed():
            return
        try:
            self._loop.call_soon_threadsafe(self._set_finished)
        except RuntimeError:
            # loop closed between the check and the call, nobody is waiting anymore
            self.logger.debug(f"service {self.name} finished after the supervisor exited")

    def _set_finished(self):
        if not self._finished.done():
            self._finished.set_result(None)

    @property
    def finished(self) -> bool:
        return self._finished.done()

    async def join_async(self, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds for the thread to finish.

        Returns:
            True if the thread finished, False on timeout

        Raises:
            ServiceFault: the service's start() (or the return hook) raised
        """
        done, _ = await asyncio.wait({self._finished}, timeout=timeout)
        if not done:
            return False
        if self.error is not None:
            raise ServiceFault(self.name, self.error) from self.error
        return True

    def kill(self):
        """Abandon the service thread unconditionally.

        Threads cannot be interrupted from the outside, so this is terminal and
        non-retriable by construction: the thread is daemonic and is torn down
        when the process exits, which the caller does right after. The service
        is never called again.
        """
        self.killed = True
        self.logger.error(f"service thread {self.name} killed")
