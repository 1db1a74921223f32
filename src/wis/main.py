from __future__ import annotations

import argparse
import logging
import threading
from typing import Optional, Sequence

from wis.application.container import AppContainer, build_container
from wis.config import get_app_paths, load_sync_settings
from wis.domain.errors import AppError
from wis.logging_config import setup_logging

log = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="wis", description="Offline-first warehouse inventory sync")
    parser.add_argument("--db", help="Path to the local store (defaults to the per-user data dir)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Show queue depth and store health")
    sub.add_parser("sync", help="Replay pending actions now")

    imp = sub.add_parser("import-items", help="Bulk upload items from an .xlsx file")
    imp.add_argument("path")

    exp = sub.add_parser("export", help="Export items, transactions and the sync queue to .xlsx")
    exp.add_argument("path")

    sub.add_parser("run", help="Watch connectivity and sync on reconnect until interrupted")
    return parser


def _run(container: AppContainer) -> None:
    stop = threading.Event()
    container.monitor.start()
    try:
        container.sync.sync_now(trigger="startup")
        while not stop.wait(1.0):
            pass
    except KeyboardInterrupt:
        log.info("shutdown_requested")
    finally:
        container.sync.detach()
        container.monitor.close()


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    paths = get_app_paths()
    setup_logging(paths.logs_dir, level=logging.INFO, console=args.command == "run")
    settings = load_sync_settings()
    container = build_container(args.db or paths.db_path, settings=settings, logs_dir=paths.logs_dir)

    try:
        if args.command == "status":
            report = container.operations.run_health_check()
            print(f"integrity:  {report.store_integrity}")
            print(f"pending:    {report.pending_actions}")
            print(f"failed:     {report.failed_actions}")
            print(f"last sync:  {report.last_sync_at or 'never'}")
        elif args.command == "sync":
            result = container.sync.sync_now()
            print(f"{result.outcome.value}: {len(result.action_ids)} action(s)")
            if result.error:
                print(f"error: {result.error}")
        elif args.command == "import-items":
            ok, skipped = container.excel.import_items_excel(args.path)
            print(f"imported {ok}, skipped {skipped}")
        elif args.command == "export":
            container.excel.export_ledger_excel(args.path)
            print(f"exported to {args.path}")
        elif args.command == "run":
            _run(container)
    except AppError as e:
        log.error("command_failed command=%s error=%s", args.command, e)
        print(f"error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
