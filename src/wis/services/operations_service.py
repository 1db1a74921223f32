from __future__ import annotations

import json
import logging
import zipfile
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path

from wis.domain.models import SyncStatus


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class HealthReport:
    store_integrity: str
    db_size_bytes: int
    logs_count: int
    pending_actions: int
    failed_actions: int
    last_sync_at: str | None
    generated_at: str


class OperationsService:
    def __init__(self, store, queue, state, db_path: Path | str, logs_dir: Path | str):
        self.store = store
        self.queue = queue
        self.state = state
        self.db_path = Path(db_path)
        self.logs_dir = Path(logs_dir)

    def run_health_check(self) -> HealthReport:
        integrity = self.store.integrity_check()
        logs_count = len(list(self.logs_dir.glob("*.log"))) if self.logs_dir.exists() else 0
        size = self.db_path.stat().st_size if self.db_path.exists() else 0
        report = HealthReport(
            store_integrity=integrity,
            db_size_bytes=size,
            logs_count=logs_count,
            pending_actions=self.queue.pending_count(),
            failed_actions=self.queue.failed_count(),
            last_sync_at=self.state.last_sync_at(),
            generated_at=datetime.now().isoformat(timespec="seconds"),
        )
        if report.failed_actions:
            log.warning("health_failed_actions count=%s", report.failed_actions)
        return report

    def export_diagnostics(self, target_dir: Path | str | None = None) -> Path:
        out_dir = Path(target_dir) if target_dir else self.db_path.parent
        out_dir.mkdir(parents=True, exist_ok=True)

        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        zip_path = out_dir / f"diagnostics_{ts}.zip"
        report = self.run_health_check()

        with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            if self.db_path.exists():
                zf.write(self.db_path, arcname=self.db_path.name)

            if self.logs_dir.exists():
                for f in sorted(self.logs_dir.glob("*.log")):
                    zf.write(f, arcname=f"logs/{f.name}")

            zf.writestr("health_report.json", json.dumps(asdict(report), ensure_ascii=False, indent=2))

            failed = [
                {
                    "id": a.id,
                    "type": a.type.value,
                    "retries": a.retries,
                    "last_error": a.last_error,
                    "last_attempt_at": a.last_attempt_at,
                }
                for a in self.queue.list_actions(SyncStatus.FAILED)
            ]
            zf.writestr("failed_actions.json", json.dumps(failed, ensure_ascii=False, indent=2))

        log.info("diagnostics_exported path=%s", zip_path)
        return zip_path
