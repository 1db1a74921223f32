import logging
from pathlib import Path

import pytest
from openpyxl import Workbook

from conftest import seed_catalog
from wis import main as cli
from wis.application.container import build_container
from wis.config import AppPaths


@pytest.fixture
def app_paths(tmp_path: Path, monkeypatch):
    paths = AppPaths(base_dir=tmp_path, db_path=tmp_path / "warehouse.db", logs_dir=tmp_path / "logs")
    monkeypatch.setattr(cli, "get_app_paths", lambda: paths)
    for key in ("WIS_REMOTE_URL", "WIS_PROBE_URL", "WIS_CHECK_INTERVAL"):
        monkeypatch.delenv(key, raising=False)
    yield paths
    for logger in (logging.getLogger(), logging.getLogger("wis.sync"), logging.getLogger("wis.ledger")):
        for h in [h for h in logger.handlers if getattr(h, "_wis_handler", False)]:
            logger.removeHandler(h)
            h.close()


def test_status_on_fresh_store(app_paths, capsys):
    assert cli.main(["status"]) == 0

    out = capsys.readouterr().out
    assert "integrity:  ok" in out
    assert "pending:    0" in out
    assert "last sync:  never" in out
    assert app_paths.db_path.exists()


def test_sync_without_remote_marks_actions_failed(app_paths, capsys):
    c = build_container(app_paths.db_path)
    _, _, _, _, item = seed_catalog(c.store)
    c.ledger.request_stock_in(item, 4)
    c.monitor.close()

    assert cli.main(["sync"]) == 0

    out = capsys.readouterr().out
    assert out.startswith("failed: 1 action(s)")
    assert "No remote sync endpoint configured" in out


def test_import_of_missing_headers_returns_error_code(app_paths, tmp_path: Path, capsys):
    xlsx = tmp_path / "bad.xlsx"
    wb = Workbook()
    wb.active.append(["name"])
    wb.save(xlsx)

    assert cli.main(["import-items", str(xlsx)]) == 1
    assert "Missing column header" in capsys.readouterr().out
