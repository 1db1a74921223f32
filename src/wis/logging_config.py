from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

# Named channels that also get their own file next to app.log.
CHANNELS = {
    "wis.ledger": "ledger.log",
    "wis.sync": "sync.log",
}

_MARK = "_wis_handler"


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _mark(handler: logging.Handler) -> logging.Handler:
    setattr(handler, _MARK, True)
    return handler


def _file_handler(path: Path, level: int) -> logging.Handler:
    fh = RotatingFileHandler(path, maxBytes=2_000_000, backupCount=5, encoding="utf-8")
    fh.setFormatter(JsonFormatter(datefmt="%Y-%m-%d %H:%M:%S"))
    fh.setLevel(level)
    return _mark(fh)


def _already_configured(logger: logging.Logger) -> bool:
    return any(getattr(h, _MARK, False) for h in logger.handlers)


def setup_logging(logs_dir: Path, level: int = logging.INFO, console: bool = False) -> None:
    """Attach JSON file handlers; safe to call more than once."""
    logs_dir = Path(logs_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)
    if not _already_configured(root):
        root.addHandler(_file_handler(logs_dir / "app.log", level))
        root.addHandler(_file_handler(logs_dir / "errors.log", logging.ERROR))
        if console:
            sh = logging.StreamHandler()
            sh.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
            sh.setLevel(level)
            root.addHandler(_mark(sh))

    for name, filename in CHANNELS.items():
        channel = logging.getLogger(name)
        channel.setLevel(level)
        if not _already_configured(channel):
            channel.addHandler(_file_handler(logs_dir / filename, level))
