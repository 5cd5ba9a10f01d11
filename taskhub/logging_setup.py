from __future__ import annotations

import logging
import re
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Mapping


LOG_DIR = Path("/data/logs")
LOG_PREFIX = "taskhub"

# Loggers that get their own level under `logging.levels` in settings.yml.
LOG_AREAS = ("recurrence", "sweep", "store", "visibility", "crud", "auth", "api", "notifications", "activity")

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
_LOGFILE_RE = re.compile(rf"^{re.escape(LOG_PREFIX)}-(\d{{4}}-\d{{2}}-\d{{2}})\.log$")


def _safe_level(level: str | None, default: str = "INFO") -> int:
    raw = (level or default).strip().upper()
    return getattr(logging, raw, logging.INFO)


class DailyDateFileHandler(logging.Handler):
    """Append records to <log_dir>/taskhub-YYYY-MM-DD.log, switching files at local midnight."""

    def __init__(self, *, base_dir: Path = LOG_DIR, level: int = logging.INFO):
        super().__init__(level=level)
        self.base_dir = Path(base_dir)
        self._lock = threading.RLock()
        self._date = ""
        self._stream = None

    def _roll(self) -> None:
        today = datetime.now().strftime("%Y-%m-%d")
        if self._stream is not None and today == self._date:
            return
        self._close_stream()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._date = today
        self._stream = open(self.base_dir / f"{LOG_PREFIX}-{today}.log", "a", encoding="utf-8", buffering=1)

    def _close_stream(self) -> None:
        if self._stream is not None:
            try:
                self._stream.close()
            except OSError:
                pass
        self._stream = None

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            with self._lock:
                self._roll()
                self._stream.write(msg + "\n")
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        with self._lock:
            self._close_stream()
        super().close()


_FILE_HANDLER: DailyDateFileHandler | None = None


def apply_area_levels(levels: Mapping[str, str] | None) -> dict[str, int]:
    """Set `taskhub.<area>` logger levels; unknown areas are ignored with a warning."""
    applied: dict[str, int] = {}
    for area, level in (levels or {}).items():
        key = str(area).strip().lower()
        if key not in LOG_AREAS:
            logging.getLogger(LOG_PREFIX).warning("Ignoring log level for unknown area %r", area)
            continue
        lvl = _safe_level(level)
        logging.getLogger(f"{LOG_PREFIX}.{key}").setLevel(lvl)
        applied[key] = lvl
    return applied


def setup_logging(
    *,
    level: str = "INFO",
    log_dir: str | Path = LOG_DIR,
    levels: Mapping[str, str] | None = None,
) -> None:
    """Attach a stream handler and the daily file handler to the root logger.

    Handlers pass everything through; the root level and the per-area levels
    decide what gets emitted. Safe to call more than once.
    """
    global _FILE_HANDLER

    formatter = logging.Formatter(fmt=_LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    root = logging.getLogger()
    root.setLevel(_safe_level(level))

    if not any(type(h) is logging.StreamHandler for h in root.handlers):
        sh = logging.StreamHandler()
        sh.setFormatter(formatter)
        root.addHandler(sh)

    if _FILE_HANDLER is None:
        _FILE_HANDLER = DailyDateFileHandler(base_dir=Path(log_dir), level=logging.NOTSET)
        root.addHandler(_FILE_HANDLER)
    _FILE_HANDLER.setFormatter(formatter)

    # Handlers stay NOTSET so an area set below the root level still reaches them.
    apply_area_levels(levels)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "apscheduler"):
        logging.getLogger(name).propagate = True


def list_log_files(*, log_dir: Path = LOG_DIR) -> list[Path]:
    """Return log files in newest-first order."""
    d = Path(log_dir)
    if not d.is_dir():
        return []
    files = [p for p in d.iterdir() if p.is_file() and _LOGFILE_RE.match(p.name)]
    return sorted(files, key=lambda p: p.stat().st_mtime, reverse=True)


def purge_old_logs(*, retention_days: int, log_dir: Path = LOG_DIR, now: datetime | None = None) -> int:
    """Delete log files whose mtime is older than retention_days."""
    days = int(retention_days or 0)
    if days <= 0:
        return 0

    cutoff = (now or datetime.now()) - timedelta(days=days)

    deleted = 0
    for p in list_log_files(log_dir=Path(log_dir)):
        try:
            if datetime.fromtimestamp(p.stat().st_mtime) < cutoff:
                p.unlink(missing_ok=True)
                deleted += 1
        except OSError:
            continue
    return deleted
