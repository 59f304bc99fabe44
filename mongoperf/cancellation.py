from __future__ import annotations

import logging
import signal
import threading
from types import FrameType
from typing import Callable, Iterable

LOGGER = logging.getLogger("mongoperf.cancellation")


class CancellationToken:
    """Cooperative stop flag shared by every feeder and worker of a run.

    Only the first ``cancel`` call has an effect; its reason is kept and
    the registered callbacks run once, on the cancelling thread.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: str | None = None
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> bool:
        with self._lock:
            if self._event.is_set():
                return False
            self._reason = reason
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        LOGGER.info("run cancelled: %s", reason)
        for callback in callbacks:
            callback()
        return True

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` on cancellation, or right away if already cancelled."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)


class CancellationSupervisor:
    """Bridge OS signals and an optional deadline into a ``CancellationToken``.

    Use as a context manager around a run. Handlers are only installed
    from the main thread and are restored on exit.
    """

    def __init__(
        self,
        token: CancellationToken,
        timeout_s: float | None = None,
        signals: Iterable[signal.Signals] = (signal.SIGINT, signal.SIGTERM),
    ) -> None:
        if timeout_s is not None and timeout_s <= 0:
            raise ValueError("timeout_s must be > 0")
        self._token = token
        self._timeout_s = timeout_s
        self._signals = tuple(signals)
        self._previous: dict[signal.Signals, object] = {}
        self._timer: threading.Timer | None = None

    @property
    def token(self) -> CancellationToken:
        return self._token

    def __enter__(self) -> CancellationToken:
        if threading.current_thread() is threading.main_thread():
            for signum in self._signals:
                self._previous[signum] = signal.signal(signum, self._handle_signal)
        if self._timeout_s is not None:
            self._timer = threading.Timer(
                self._timeout_s,
                self._token.cancel,
                kwargs={"reason": f"deadline of {self._timeout_s:g}s exceeded"},
            )
            self._timer.daemon = True
            self._timer.start()
        return self._token

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        for signum, handler in self._previous.items():
            signal.signal(signum, handler)
        self._previous.clear()
        if exc_type is KeyboardInterrupt:
            self._token.cancel("interrupted")

    def _handle_signal(self, signum: int, frame: FrameType | None) -> None:
        self._token.cancel(f"received {signal.Signals(signum).name}")


__all__ = ["CancellationSupervisor", "CancellationToken"]
