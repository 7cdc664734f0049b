from __future__ import annotations

import os
import shlex
import signal
import subprocess
import time
from typing import Callable

from .log import Level, log_event
from .runtime import ProcessState
from .settings import settings


def pid_alive(pid: int | None) -> bool:
    """Probe *pid* with signal 0."""
    if not pid or pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by another user.
        return True
    return True


class ProcessHandle:
    """Last known proxy PID, re-validated against the PID file on refresh()."""

    def __init__(self, pid_file: str):
        self.pid_file = pid_file
        self.pid: int | None = None

    def read_pid_file(self) -> int | None:
        try:
            with open(self.pid_file, encoding="utf-8") as f:
                raw = f.read().strip()
        except OSError:
            return None
        try:
            pid = int(raw)
        except ValueError:
            return None
        return pid if pid > 0 else None

    def refresh(self) -> int | None:
        if self.pid is not None and pid_alive(self.pid):
            return self.pid
        self.pid = self.read_pid_file()
        return self.pid

    def forget(self) -> None:
        self.pid = None


class ProxySupervisor:
    """Starts, reloads and stops the external proxy process.

    The proxy is never owned: it is found through its PID file and only
    ever addressed by signals.
    """

    def __init__(
        self,
        command: str | None = None,
        pid_file: str | None = None,
        start_attempts: int | None = None,
        start_poll_s: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.command = shlex.split(command or settings.proxy_command)
        self.handle = ProcessHandle(pid_file or settings.pid_file)
        self.start_attempts = max(1, start_attempts if start_attempts is not None else settings.start_attempts)
        self.start_poll_s = start_poll_s if start_poll_s is not None else settings.start_poll_s
        self.sleep = sleep
        self.state = ProcessState.UNKNOWN
        self._child: subprocess.Popen | None = None

    @property
    def pid(self) -> int | None:
        return self.handle.refresh()

    def running(self) -> bool:
        alive = pid_alive(self.handle.refresh())
        if alive:
            if self.state != ProcessState.STOPPING:
                self.state = ProcessState.RUNNING
        else:
            self.state = ProcessState.NOT_RUNNING
        return alive

    def _spawn(self) -> bool:
        try:
            self._child = subprocess.Popen(self.command)
        except OSError as e:
            log_event(Level.ERROR, f"Failed to spawn {' '.join(self.command)}: {type(e).__name__}: {e}")
            return False
        return True

    def start(self) -> bool:
        if self.running():
            return True
        self.state = ProcessState.STARTING
        if not self._spawn():
            self.state = ProcessState.NOT_RUNNING
            return False
        log_event(Level.INFO, f"Started {self.command[0]}, waiting for PID")
        for _ in range(self.start_attempts):
            if self.running():
                break
            self.sleep(self.start_poll_s)
        if self.running():
            log_event(Level.INFO, f"Started {self.command[0]} with pid {self.handle.pid}")
            return True
        log_event(Level.ERROR, f"Failed to start {self.command[0]}.")
        return False

    def _send(self, sig: signal.Signals) -> bool:
        pid = self.handle.refresh()
        if pid is None:
            return False
        try:
            os.kill(pid, sig)
        except ProcessLookupError:
            self.handle.forget()
            self.state = ProcessState.NOT_RUNNING
            return False
        except PermissionError:
            # Stale PID file pointing at a process we do not own.
            log_event(Level.WARN, f"Not permitted to signal pid {pid}; ignoring it as not ours")
            self.handle.forget()
            self.state = ProcessState.NOT_RUNNING
            return False
        return True

    def reload(self) -> bool:
        sent = self._send(signal.SIGHUP)
        if sent:
            log_event(Level.INFO, f"Reloading {self.command[0]} (pid {self.handle.pid})")
        return sent

    def stop(self) -> None:
        if self._send(signal.SIGTERM):
            self.state = ProcessState.STOPPING
            log_event(Level.INFO, f"Stopping {self.command[0]} (pid {self.handle.pid})")
        else:
            self.state = ProcessState.NOT_RUNNING

    def upgrade(self) -> bool:
        """Start the proxy if it is down, otherwise reload it."""
        if not self.running():
            return self.start()
        return self.reload()

    def reap(self) -> tuple[int, int] | None:
        """Collect one exited child without blocking.

        Returns (pid, exit code) or None when there was nothing to collect.
        """
        try:
            pid, status = os.waitpid(-1, os.WNOHANG)
        except ChildProcessError:
            return None
        if pid == 0:
            return None
        code = os.waitstatus_to_exitcode(status)
        log_event(Level.INFO, f"Reaped child pid {pid} (exit code {code})")
        if self._child is not None and self._child.pid == pid:
            self._child.returncode = code
            self._child = None
        if self.handle.pid == pid:
            self.handle.forget()
        return pid, code
