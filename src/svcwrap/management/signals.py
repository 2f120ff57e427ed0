"""Signal trampoline: run stop callbacks outside of signal-handler context.

Handlers are registered on the asyncio loop (loop.add_signal_handler), so the
OS signal only wakes the loop. The loop then hands the callback to a short
lived daemon thread, because callbacks may take locks, log, and call into the
service's stop hook, none of which should block or re-enter the loop.
"""

import asyncio
import logging
import signal
import threading
from typing import Callable


class SignalTrampoline:
    """Installs loop-level handlers for the listened signals."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._loop = loop or asyncio.get_running_loop()
        self._trapped: list[signal.Signals] = []
        self.logger = logging.getLogger("sig")

    def trap(self, sig: signal.Signals | str, callback: Callable[[], object]):
        """Run ``callback`` on a worker thread whenever ``sig`` is received.

        SIGKILL/SIGSTOP cannot be trapped and are rejected.
        """
        sig = self._resolve(sig)
        if sig in (signal.SIGKILL, signal.SIGSTOP):
            raise ValueError(f"{sig.name} cannot be trapped")
        self._loop.add_signal_handler(sig, self._dispatch, sig, callback)
        self._trapped.append(sig)
        self.logger.debug(f"trapped {sig.name}")

    def _dispatch(self, sig: signal.Signals, callback: Callable[[], object]):
        self.logger.info(f"received {sig.name}")
        threading.Thread(target=callback, name=f"signal-{sig.name}", daemon=True).start()

    def restore(self):
        """Remove all handlers installed by this trampoline."""
        for sig in self._trapped:
            self._loop.remove_signal_handler(sig)
        self._trapped.clear()

    @staticmethod
    def _resolve(sig: signal.Signals | str) -> signal.Signals:
        if isinstance(sig, signal.Signals):
            return sig
        name = str(sig).upper()
        if not name.startswith("SIG"):
            name = f"SIG{name}"
        return signal.Signals[name]
