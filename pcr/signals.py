from __future__ import annotations

import os
import select
import signal

WATCHED_SIGNALS = (
    signal.SIGINT,
    signal.SIGQUIT,
    signal.SIGTERM,
    signal.SIGHUP,
    signal.SIGCHLD,
)
SHUTDOWN_SIGNALS = frozenset({signal.SIGINT, signal.SIGQUIT, signal.SIGTERM})


class SignalWatcher:
    """Turns asynchronous signals into events the main loop polls for.

    Each handler writes one byte (the signal number) into a pipe and does
    nothing else; all real handling happens after watch() returns.
    """

    def __init__(self, *signals: signal.Signals):
        self.signals = tuple(signals) or WATCHED_SIGNALS
        self._reader, self._writer = os.pipe()
        os.set_blocking(self._reader, False)
        os.set_blocking(self._writer, False)
        self._closed = False
        self._previous: dict[signal.Signals, object] = {}
        for sig in self.signals:
            self._previous[sig] = signal.signal(sig, self._handler)

    def _handler(self, signum: int, frame: object) -> None:
        try:
            os.write(self._writer, bytes([signum]))
        except BlockingIOError:
            # Pipe full: the loop already has events queued.
            pass

    def fileno(self) -> int:
        return self._reader

    def watch(self, timeout: float | None = None) -> signal.Signals | None:
        """Wait up to *timeout* seconds; return the next signal or None."""
        ready, _, _ = select.select([self._reader], [], [], timeout)
        if not ready:
            return None
        try:
            data = os.read(self._reader, 1)
        except BlockingIOError:
            return None
        if not data:
            return None
        return self.decode(data[0])

    @staticmethod
    def decode(msg: int) -> signal.Signals:
        return signal.Signals(msg)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for sig, previous in self._previous.items():
            signal.signal(sig, previous if previous is not None else signal.SIG_DFL)
        self._previous.clear()
        os.close(self._reader)
        os.close(self._writer)

    def __enter__(self) -> "SignalWatcher":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
