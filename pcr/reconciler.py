from __future__ import annotations

import signal
import time
from typing import Callable

from .configs import ConfigReconciler
from .log import Level, log_event
from .runtime import ServiceTopology
from .settings import settings
from .signals import SHUTDOWN_SIGNALS, SignalWatcher
from .supervisor import ProxySupervisor
from .topology import TopologyBuilder


class Reconciler:
    """Keeps the proxy configuration in step with the running containers.

    One tick builds the topology, writes changed configuration, reloads the
    proxy if needed and makes sure it is running. Between ticks the loop
    blocks on the signal watcher for at most ``interval`` seconds.
    """

    def __init__(
        self,
        builder: TopologyBuilder,
        configs: ConfigReconciler,
        supervisor: ProxySupervisor,
        watcher: SignalWatcher,
        interval: int | None = None,
        child_backoff_s: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.builder = builder
        self.configs = configs
        self.supervisor = supervisor
        self.watcher = watcher
        self.interval = max(1, int(interval if interval is not None else settings.interval))
        self.child_backoff_s = child_backoff_s if child_backoff_s is not None else settings.child_backoff_s
        self.sleep = sleep

    def run(self) -> int:
        log_event(Level.INFO, f"Reconciler started (interval {self.interval}s, config dir {self.configs.config_dir})")
        while True:
            topology = self._tick()
            sig = self.watcher.watch(timeout=self.interval)
            if sig is None:
                continue
            try:
                if self.handle_signal(sig, topology):
                    return 0
            except Exception as e:
                log_event(Level.ERROR, f"Handling {sig.name} failed: {type(e).__name__}: {e}")
                if sig in SHUTDOWN_SIGNALS:
                    return 0

    def _tick(self) -> ServiceTopology | None:
        try:
            topology = self.builder.build()
            if topology is None:
                log_event(Level.WARN, "Container runtime unavailable; keeping current configuration")
            else:
                self.configs.update(topology)
            self.supervisor.start()
        except Exception as e:
            log_event(Level.ERROR, f"Reconciler tick failed: {type(e).__name__}: {e}")
            return None
        return topology

    def handle_signal(self, sig: signal.Signals, topology: ServiceTopology | None) -> bool:
        """Act on one signal. Returns True when the loop should exit."""
        log_event(Level.INFO, f"Received signal {sig.name}")
        if sig in SHUTDOWN_SIGNALS:
            log_event(Level.INFO, "Shutting down")
            self.supervisor.stop()
            return True
        if sig == signal.SIGHUP:
            self.force_update(topology)
        elif sig == signal.SIGCHLD:
            while self.supervisor.reap() is not None:
                pass
            self.sleep(self.child_backoff_s)
        return False

    def force_update(self, topology: ServiceTopology | None) -> None:
        """Re-run reconciliation and reload the proxy even if nothing changed."""
        log_event(Level.INFO, "Forcing update")
        if topology is None:
            topology = self.builder.build()
        if topology is not None:
            # Reload once below, whether or not a file changed.
            self.configs.reconcile(topology)
        self.supervisor.upgrade()
