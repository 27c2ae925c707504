"""Command-line interface for obsfleet."""

from __future__ import annotations

import argparse
import errno
import json
import signal
import time
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

import structlog

from obsfleet import __version__ as OBSFLEET_VERSION
from obsfleet.certs import create_observability_certs, rotate_observability_certs
from obsfleet.config import OWNER_LABELS, Settings
from obsfleet.controller import PASS_ERRORS, Reconciler
from obsfleet.errors import ConvergenceError
from obsfleet.status import project_conditions
from obsfleet.store.base import ObjectStore, WatchEvent, namespace_of
from obsfleet.store.errors import StoreError
from obsfleet.store.kubectl import KubectlStore
from obsfleet.telemetry import setup_logging
from obsfleet.watch import WorkQueue, fleet_key, new_dispatcher

logger = structlog.get_logger("obsfleet.cli")


def _ensure_out_dir(out_dir: str) -> Path:
    path = Path(out_dir)
    path.mkdir(parents=True, exist_ok=True)
    return path


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _format_utc(dt: datetime) -> str:
    return dt.isoformat(timespec="seconds")


def _write_json_report(path: Path, payload: dict) -> None:
    path.write_text(
        json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True) + "\n",
        encoding="utf-8",
    )


def _settings_from_args(args: argparse.Namespace) -> Settings:
    settings = Settings.from_env()
    overrides = {}
    if getattr(args, "namespace", None):
        overrides["namespace"] = args.namespace
    if getattr(args, "log_level", None):
        overrides["log_level"] = args.log_level
    if getattr(args, "log_format", None):
        overrides["log_format"] = args.log_format
    return replace(settings, **overrides) if overrides else settings


def _build_store(settings: Settings, context: str | None = None) -> ObjectStore:
    return KubectlStore(kubectl=settings.kubectl, context=context)


def _prepare(args: argparse.Namespace) -> tuple[Settings, ObjectStore, Path]:
    settings = _settings_from_args(args)
    setup_logging(settings.log_level, settings.log_format)
    store = _build_store(settings, getattr(args, "context", None))
    return settings, store, _ensure_out_dir(args.out)


def _error_payload(exc: Exception) -> dict:
    payload: dict = {"type": type(exc).__name__, "message": str(exc)}
    if isinstance(exc, ConvergenceError):
        payload["failed_creates"] = exc.failed_creates
        payload["failed_deletes"] = exc.failed_deletes
        if exc.report is not None:
            payload["convergence"] = exc.report.to_dict()  # type: ignore[attr-defined]
    return payload


def _write_certs_report(out_dir: Path, action: str, *, ok: bool, **extra: object) -> None:
    payload: dict = {"schema": "certs.v0", "action": action, "ok": ok}
    payload.update(extra)
    _write_json_report(out_dir / "certs_latest.json", payload)


def _run_pass(reconciler: Reconciler, queue: WorkQueue, key: str) -> dict:
    started_at = _utc_now()
    queue.add(key)
    result = reconciler.process_next(queue)
    if result is None:
        exc = reconciler.last_error or RuntimeError(f"no pass ran for {key}")
        return {
            "schema": "reconcile_pass.v0",
            "ok": False,
            "started_at": _format_utc(started_at),
            "finished_at": _format_utc(_utc_now()),
            "error": _error_payload(exc),
        }
    payload = result.to_dict()
    payload["ok"] = True
    payload["started_at"] = _format_utc(started_at)
    payload["finished_at"] = _format_utc(_utc_now())
    return payload


def cmd_reconcile(args: argparse.Namespace) -> int:
    settings, store, out_dir = _prepare(args)
    reconciler = Reconciler(store, settings)
    queue = WorkQueue()
    key = fleet_key(settings)
    if not args.watch:
        report = _run_pass(reconciler, queue, key)
        _write_json_report(out_dir / "reconcile_latest.json", report)
        print(f"outcome={report.get('outcome', 'failed')} ok={str(report['ok']).lower()}")
        return 0 if report["ok"] else 1

    interval_s = float(args.interval)
    max_iterations = int(args.iterations) if args.iterations else None
    started_at = _utc_now()
    iterations_done = 0
    failed_passes = 0
    last_report: dict | None = None
    stop_requested = False

    events_accepted = 0
    dispatcher = new_dispatcher(settings, queue)

    def _on_event(event: WatchEvent) -> None:
        nonlocal events_accepted
        if dispatcher.handle(event):
            events_accepted += 1

    subscribe = getattr(store, "subscribe", None)
    if callable(subscribe):
        subscribe(_on_event)

    def _signal_handler(signum: int, _frame: object | None) -> None:
        nonlocal stop_requested
        stop_requested = True

    previous_handlers = {sig: signal.signal(sig, _signal_handler) for sig in (signal.SIGINT, signal.SIGTERM)}

    try:
        while not stop_requested:
            if max_iterations is not None and iterations_done >= max_iterations:
                break
            last_report = _run_pass(reconciler, queue, key)
            iterations_done += 1
            if not last_report["ok"]:
                failed_passes += 1
            _write_json_report(out_dir / "reconcile_latest.json", last_report)
            print(
                " ".join(
                    [
                        f"iter={iterations_done}",
                        f"outcome={last_report.get('outcome', 'failed')}",
                        f"ok={str(last_report['ok']).lower()}",
                    ]
                )
            )

            if max_iterations is not None and iterations_done >= max_iterations:
                break
            if stop_requested:
                break
            if interval_s > 0:
                try:
                    time.sleep(interval_s)
                except InterruptedError:
                    pass
                except OSError as exc:
                    if exc.errno != errno.EINTR:
                        raise
    finally:
        for sig, handler in previous_handlers.items():
            signal.signal(sig, handler)
        _write_json_report(
            out_dir / "watch_latest.json",
            {
                "schema": "reconcile_watch.v0",
                "started_at": _format_utc(started_at),
                "finished_at": _format_utc(_utc_now()),
                "interval_s": interval_s,
                "max_iterations": max_iterations,
                "iterations_done": iterations_done,
                "failed_passes": failed_passes,
                "events_accepted": events_accepted,
                "pending_keys": len(queue),
                "last_ok": None if last_report is None else last_report["ok"],
            },
        )

    if last_report is not None and not last_report["ok"]:
        return 1
    return 0


def cmd_certs_bootstrap(args: argparse.Namespace) -> int:
    settings, store, out_dir = _prepare(args)
    try:
        created = create_observability_certs(store, settings)
    except PASS_ERRORS as exc:
        logger.error("certs_bootstrap_failed", error=str(exc))
        _write_certs_report(out_dir, "bootstrap", ok=False, error=_error_payload(exc))
        return 1
    _write_certs_report(out_dir, "bootstrap", ok=True, secrets=created)
    print(f"created={len(created)}")
    return 0


def cmd_certs_rotate(args: argparse.Namespace) -> int:
    settings, store, out_dir = _prepare(args)
    try:
        rotated = rotate_observability_certs(store, settings)
    except PASS_ERRORS as exc:
        logger.error("certs_rotate_failed", error=str(exc))
        _write_certs_report(out_dir, "rotate", ok=False, error=_error_payload(exc))
        return 1
    _write_certs_report(out_dir, "rotate", ok=True, secrets=rotated)
    print(f"rotated={len(rotated)}")
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    _settings, store, out_dir = _prepare(args)
    try:
        addons = store.list("ObservabilityAddon", labels=OWNER_LABELS)
    except StoreError as exc:
        logger.error("status_list_failed", error=str(exc))
        return 1

    members = []
    for addon in addons:
        status = addon.get("status") if isinstance(addon.get("status"), dict) else {}
        raw = [c for c in status.get("conditions") or [] if isinstance(c, dict)]
        conditions = [c.to_dict() for c in project_conditions(raw)]
        members.append({"namespace": namespace_of(addon), "conditions": conditions})
        summary = ",".join(f"{c['type']}={c['status']}" for c in conditions) or "none"
        print(f"{namespace_of(addon)} {summary}")

    _write_json_report(out_dir / "status_latest.json", {"schema": "fleet_status.v0", "members": members})
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="obsfleet")
    parser.add_argument("--version", action="version", version=f"obsfleet {OBSFLEET_VERSION}")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--out", default="report", help="Output directory")
    common.add_argument("--namespace", help="Hub namespace (default: $OBSFLEET_NAMESPACE)")
    common.add_argument("--context", help="kubectl context")
    common.add_argument("--log-level", choices=["debug", "info", "warning", "error"], help="Log level")
    common.add_argument("--log-format", choices=["console", "json"], help="Log renderer")

    sub = parser.add_subparsers(dest="command", required=True)

    reconcile = sub.add_parser("reconcile", parents=[common], help="Run reconcile passes over the fleet")
    reconcile.add_argument("--watch", action="store_true", help="Keep running passes")
    reconcile.add_argument("--interval", type=float, default=30.0, help="Seconds between passes in watch mode")
    reconcile.add_argument("--iterations", type=int, default=0, help="Stop after N passes (0 = until signalled)")
    reconcile.set_defaults(func=cmd_reconcile)

    certs = sub.add_parser("certs", help="Manage observability certificates")
    certs_sub = certs.add_subparsers(dest="certs_command", required=True)
    bootstrap = certs_sub.add_parser("bootstrap", parents=[common], help="Create missing authorities and leaves")
    bootstrap.set_defaults(func=cmd_certs_bootstrap)
    rotate = certs_sub.add_parser("rotate", parents=[common], help="Re-sign authorities, then leaves")
    rotate.set_defaults(func=cmd_certs_rotate)

    status = sub.add_parser("status", parents=[common], help="Print projected addon conditions per member")
    status.set_defaults(func=cmd_status)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
