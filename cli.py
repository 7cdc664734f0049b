from __future__ import annotations

import argparse
import json
import sys
from dataclasses import replace

from pcr import db
from pcr.configs import ConfigReconciler, TemplateRenderError
from pcr.docker_ops import docker_available, lazy_docker_client
from pcr.log import Level, configure, configure_from_settings, log_event, log_exception
from pcr.reconciler import Reconciler
from pcr.runtime import topology_to_dict
from pcr.settings import Settings, settings
from pcr.signals import SignalWatcher
from pcr.supervisor import ProxySupervisor
from pcr.topology import TopologyBuilder


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False, sort_keys=True))


def _settings_from_args(args: argparse.Namespace) -> Settings:
    overrides = {}
    if args.config_dir:
        overrides["config_dir"] = args.config_dir
    if args.interval is not None:
        overrides["poll_interval_s"] = args.interval
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.pid_file:
        overrides["pid_file"] = args.pid_file
    if args.proxy_command:
        overrides["proxy_command"] = args.proxy_command
    return replace(settings, **overrides)


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Keep a reverse proxy's config in sync with running containers")
    p.add_argument("--config-dir", help="Directory holding the *.j2 templates")
    p.add_argument("--interval", type=int, help="Seconds between reconciliations")
    p.add_argument("--log-level", choices=[lvl.value for lvl in Level] + ["WARNING"], type=str.upper)
    p.add_argument("--pid-file", help="PID file maintained by the proxy")
    p.add_argument("--proxy-command", help="Command that starts the proxy")
    sub = p.add_subparsers(dest="cmd")

    sub.add_parser("run", help="Reconcile and supervise the proxy until signalled (default)")
    sub.add_parser("once", help="Reconcile once and reload the proxy if anything changed")
    sub.add_parser("topology", help="Print the current service topology as JSON")
    sub.add_parser("render", help="Print the rendered templates without writing them")

    s_ev = sub.add_parser("events", help="Show the newest journal events")
    s_ev.add_argument("--limit", type=int, default=20)

    args = p.parse_args(argv)
    cmd = args.cmd or "run"
    s = _settings_from_args(args)

    configure_from_settings(s)
    if cmd in {"topology", "render", "events"}:
        # Keep stdout clean for the command's own output.
        configure(stream=sys.stderr)

    if cmd == "events":
        if not s.db_path:
            log_event(Level.ERROR, "No event journal configured (set PCR_DB_PATH)")
            return 1
        _print(db.latest_events(s.db_path, limit=args.limit))
        return 0

    client = lazy_docker_client(s.docker_base_url)
    builder = TopologyBuilder(client)

    if cmd == "topology":
        topology = builder.build()
        if topology is None:
            return 1
        _print(topology_to_dict(topology))
        return 0

    configs = ConfigReconciler(config_dir=s.config_dir, template_suffix=s.template_suffix)

    if cmd == "render":
        topology = builder.build()
        if topology is None:
            return 1
        try:
            rendered = configs.render_all(topology)
        except TemplateRenderError as e:
            log_exception(f"Failed to render template {e.template}", e.cause)
            return 1
        for cfg in rendered:
            print(f"# {cfg.template} -> {cfg.destination}")
            sys.stdout.write(cfg.content.decode("utf-8"))
        return 0

    supervisor = ProxySupervisor(
        command=s.proxy_command,
        pid_file=s.pid_file,
        start_attempts=s.start_attempts,
        start_poll_s=s.start_poll_s,
    )
    configs.supervisor = supervisor

    if cmd == "once":
        topology = builder.build()
        if topology is None:
            return 1
        configs.update(topology)
        return 0

    if not docker_available(client):
        log_event(Level.WARN, "Docker is not reachable yet; will keep retrying every tick")

    with SignalWatcher() as watcher:
        reconciler = Reconciler(
            builder=builder,
            configs=configs,
            supervisor=supervisor,
            watcher=watcher,
            interval=s.interval,
            child_backoff_s=s.child_backoff_s,
        )
        return reconciler.run()


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
