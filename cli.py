from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys

import requests

from itp.events import EventLog, configure_logging, log_event
from itp.health_server import HealthServer, create_app
from itp.k8s_ops import load_api
from itp.reconciler import Reconciler
from itp.runtime import RuntimeState
from itp.settings import DEFAULT_ANNOTATION_KEY, DEFAULT_CLASS_ANNOTATION_KEY, DEFAULT_INGRESS_CLASS, ConfigError, Settings, parse_duration

logger = logging.getLogger("itp.cli")

COMMANDS = {"run", "once", "status", "events"}


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _duration(raw: str) -> float:
    try:
        return parse_duration(raw)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def _controller_flags() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(add_help=False)
    p.add_argument("--ips", default="", help="Comma-separated list of IPs to probe (env IPS)")
    p.add_argument("--http-scheme", default="http", help="http or https (env HTTP_SCHEME)")
    p.add_argument("--http-path", default="/", help="HTTP path to GET on each IP (env HTTP_PATH)")
    p.add_argument("--host-header", default=None, help="Host header sent with each probe (env HOST_HEADER)")
    p.add_argument("--timeout", type=_duration, default=2.0, help="HTTP request timeout per IP, e.g. 2s (env TIMEOUT)")
    p.add_argument("--interval", type=_duration, default=30.0, help="Probe interval, e.g. 30s (env INTERVAL)")
    p.add_argument("--insecure-skip-verify", action="store_true", help="Skip TLS verification when scheme=https (env INSECURE_SKIP_VERIFY)")
    p.add_argument("--annotation-key", default=DEFAULT_ANNOTATION_KEY, help="Annotation key to update on the Ingress (env ANNOTATION_KEY)")
    p.add_argument("--ingress-namespace", default=None, help="Namespace of a single Ingress to manage (env INGRESS_NAMESPACE)")
    p.add_argument("--ingress-name", default=None, help="Name of a single Ingress to manage; disables class matching (env INGRESS_NAME)")
    p.add_argument(
        "--ingress-class-annotation-key",
        default=DEFAULT_CLASS_ANNOTATION_KEY,
        help="Annotation key that stores the ingress class (env INGRESS_CLASS_ANNOTATION_KEY)",
    )
    p.add_argument("--ingress-class", default=DEFAULT_INGRESS_CLASS, help="Ingress class value to target (env INGRESS_CLASS)")
    p.add_argument("--health-bind", default="0.0.0.0:8081", help="host:port for /healthz and /readyz, empty to disable (env HEALTH_BIND)")
    p.add_argument("--log-level", default="INFO", help="DEBUG, INFO, WARNING or ERROR (env LOG_LEVEL)")
    p.add_argument("--kubeconfig", default=None, help="Path to a kubeconfig; default is in-cluster config (env KUBECONFIG)")
    return p


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Probe backend IPs and publish the healthy set as an Ingress annotation")
    sub = p.add_subparsers(dest="cmd", required=True)
    flags = _controller_flags()

    sub.add_parser("run", parents=[flags], help="Run the reconcile loop until SIGINT/SIGTERM")
    sub.add_parser("once", parents=[flags], help="Run a single cycle and exit")

    s_status = sub.add_parser("status", help="Show the last cycle of a running controller")
    s_status.add_argument("--api", default="http://localhost:8081", help="Health server base URL")

    s_ev = sub.add_parser("events", help="Show recent events of a running controller")
    s_ev.add_argument("--api", default="http://localhost:8081", help="Health server base URL")
    s_ev.add_argument("--limit", type=int, default=20)
    return p


def _controller(args: argparse.Namespace, once: bool) -> int:
    configure_logging(os.environ.get("LOG_LEVEL") or args.log_level)
    try:
        settings = Settings.from_sources(args)
    except ConfigError as e:
        log_event(logger, "ERROR", "invalid configuration", exc=e)
        return 2

    try:
        api = load_api(settings.kubeconfig)
    except Exception as e:
        log_event(logger, "ERROR", "unable to build Kubernetes client", exc=e)
        return 1

    runtime = RuntimeState()
    journal = EventLog()
    reconciler = Reconciler(settings, api, runtime=runtime, journal=journal)

    if once:
        report = reconciler.run_cycle()
        return 0 if report.outcome == "ok" else 1

    server = None
    if settings.health_bind:
        server = HealthServer(create_app(runtime, journal, settings.summary()), settings.health_bind)
        server.start()

    def _on_signal(signum, _frame) -> None:
        log_event(logger, "INFO", "shutdown requested", signal=signal.Signals(signum).name)
        reconciler.stop()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    log_event(logger, "INFO", "starting", **settings.summary())
    try:
        reconciler.run()
    finally:
        if server is not None:
            server.shutdown()
    return 0


def main(argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    if not argv or argv[0] not in COMMANDS | {"-h", "--help"}:
        argv.insert(0, "run")
    args = build_parser().parse_args(argv)

    if args.cmd in {"run", "once"}:
        return _controller(args, once=args.cmd == "once")

    base = args.api.rstrip("/")
    try:
        if args.cmd == "status":
            r = requests.get(f"{base}/status", timeout=10)
        else:
            r = requests.get(f"{base}/events", params={"limit": args.limit}, timeout=10)
    except requests.RequestException as e:
        print(f"cannot reach {base}: {e}", file=sys.stderr)
        return 1
    _print(r.json())
    return 0 if r.ok else 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
