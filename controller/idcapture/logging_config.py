"""Logging bootstrap for the capture controller.

Two files land in ``log_dir``:

* ``capture-runtime.log`` gets everything at ``level`` and above.
* ``capture-submissions.log`` is an audit trail of upload, finalize and
  compensation activity only, kept for the same retention period.
"""
from __future__ import annotations

from logging.config import dictConfig
from pathlib import Path
from typing import Any, Dict, Optional

RUNTIME_LOG = "capture-runtime.log"
SUBMISSION_LOG = "capture-submissions.log"

# loggers whose records also go to the submission audit file
AUDITED_LOGGERS = ("idcapture.submission", "idcapture.backend")


def _rotating_file(path: Path, level: str, retention_days: int, formatter: str) -> Dict[str, Any]:
    return {
        "class": "logging.handlers.TimedRotatingFileHandler",
        "formatter": formatter,
        "level": level,
        "filename": str(path),
        "when": "midnight",
        "backupCount": max(int(retention_days), 1),
        "utc": True,
        "delay": True,
        "encoding": "utf-8",
    }


def configure_logging(level: str = "INFO", log_dir: Optional[Path] = None, retention_days: int = 14) -> Path:
    """Console, runtime file and submission audit file. Returns the log directory."""

    if log_dir is None:
        log_dir = Path(__file__).resolve().parents[2] / "logs"
    log_dir = Path(log_dir).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)

    # audit records are kept at INFO even when the console is quieter
    audit_level = "INFO" if level in ("WARNING", "ERROR", "CRITICAL") else level

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                },
                "audit": {
                    "format": "%(asctime)s | %(levelname)s | %(message)s",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "level": level,
                },
                "runtime_file": _rotating_file(log_dir / RUNTIME_LOG, level, retention_days, "default"),
                "submission_file": _rotating_file(log_dir / SUBMISSION_LOG, audit_level, retention_days, "audit"),
            },
            "loggers": {
                "httpx": {"level": "WARNING"},
                **{name: {"level": audit_level, "handlers": ["submission_file"]} for name in AUDITED_LOGGERS},
            },
            "root": {"level": level, "handlers": ["console", "runtime_file"]},
        }
    )
    return log_dir


__all__ = ["configure_logging", "RUNTIME_LOG", "SUBMISSION_LOG"]
