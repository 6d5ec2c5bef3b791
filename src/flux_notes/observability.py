"""Logging and operation metrics for Flux Notes.

Log output goes to a size-rotated file under the log directory; each
MCP tool call is timed and counted by :func:`timed_operation`.
"""
import json
import logging
import time
import uuid
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterator, Optional, Union

logger = logging.getLogger(__name__)

ROOT_LOGGER_NAME = "flux_notes"
DEFAULT_LOG_DIR = Path.home() / ".flux-notes" / "logs"
DEFAULT_METRICS_FILE = Path.home() / ".flux-notes" / "metrics.json"
LOG_FILE_NAME = "flux-notes.log"

# ISO 8601 timestamps
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: Union[int, str] = logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    console: bool = True,
) -> Path:
    """Send the flux_notes logger hierarchy to a rotating log file.

    Calling it again replaces the file handler instead of stacking a
    second one.

    Args:
        log_dir: Directory for log files. Defaults to ~/.flux-notes/logs/
        level: Logging level, as a number or a name such as "DEBUG".
        max_bytes: Size at which the log file is rotated.
        backup_count: Number of rotated files to keep.
        console: Also log to stderr.

    Returns:
        Path to the log file.

    Raises:
        OSError: If the log directory cannot be created.
    """
    log_path = Path(log_dir).expanduser() if log_dir else DEFAULT_LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)
    log_file = log_path / LOG_FILE_NAME

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    for handler in list(root_logger.handlers):
        if isinstance(handler, RotatingFileHandler):
            root_logger.removeHandler(handler)
            handler.close()

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    if console and not any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, RotatingFileHandler)
        for h in root_logger.handlers
    ):
        # stdout carries the MCP stdio transport
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    root_logger.info(
        f"Logging configured: {log_file} (max {max_bytes} bytes, {backup_count} backups)"
    )
    return log_file


@dataclass
class OperationMetrics:
    """Counters and timings for one operation name."""
    count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_duration_ms: float = 0.0
    min_duration_ms: Optional[float] = None
    max_duration_ms: float = 0.0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None

    def record(self, duration_ms: float, success: bool, error: Optional[str]) -> None:
        self.count += 1
        self.total_duration_ms += duration_ms
        if self.min_duration_ms is None or duration_ms < self.min_duration_ms:
            self.min_duration_ms = duration_ms
        self.max_duration_ms = max(self.max_duration_ms, duration_ms)
        if success:
            self.success_count += 1
        else:
            self.error_count += 1
            self.last_error = error
            self.last_error_time = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "total_duration_ms": self.total_duration_ms,
            "min_duration_ms": self.min_duration_ms,
            "max_duration_ms": self.max_duration_ms,
            "last_error": self.last_error,
            "last_error_time": (
                self.last_error_time.isoformat() if self.last_error_time else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OperationMetrics":
        last_error_time = data.get("last_error_time")
        return cls(
            count=data.get("count", 0),
            success_count=data.get("success_count", 0),
            error_count=data.get("error_count", 0),
            total_duration_ms=data.get("total_duration_ms", 0.0),
            min_duration_ms=data.get("min_duration_ms"),
            max_duration_ms=data.get("max_duration_ms", 0.0),
            last_error=data.get("last_error"),
            last_error_time=(
                datetime.fromisoformat(last_error_time) if last_error_time else None
            ),
        )


class MetricsCollector:
    """Thread-safe per-operation metrics with JSON persistence.

    Args:
        metrics_file: Where metrics are saved. Defaults to ~/.flux-notes/metrics.json
        auto_save_interval: Save every N recorded operations (0 disables).
        load_existing: Resume from the metrics file if it exists.
    """

    def __init__(
        self,
        metrics_file: Optional[Union[str, Path]] = None,
        auto_save_interval: int = 100,
        load_existing: bool = True,
    ):
        self._metrics: Dict[str, OperationMetrics] = defaultdict(OperationMetrics)
        self._lock = Lock()
        self._start_time = datetime.now(timezone.utc)
        self._metrics_file = Path(metrics_file) if metrics_file else DEFAULT_METRICS_FILE
        self._auto_save_interval = auto_save_interval
        self._unsaved = 0

        if load_existing:
            self._load()

    @property
    def metrics_file(self) -> Path:
        return self._metrics_file

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None,
    ) -> None:
        """Record one run of an operation."""
        with self._lock:
            self._metrics[operation].record(duration_ms, success, error)
            self._unsaved += 1
            if self._auto_save_interval > 0 and self._unsaved >= self._auto_save_interval:
                self._save_unlocked()

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Snapshot of every operation with derived average and success rate."""
        with self._lock:
            snapshot = {}
            for name, m in self._metrics.items():
                snapshot[name] = {
                    "count": m.count,
                    "success_count": m.success_count,
                    "error_count": m.error_count,
                    "success_rate": m.success_count / m.count if m.count else 0,
                    "avg_duration_ms": round(m.total_duration_ms / m.count, 2) if m.count else 0,
                    "min_duration_ms": round(m.min_duration_ms or 0, 2),
                    "max_duration_ms": round(m.max_duration_ms, 2),
                    "last_error": m.last_error,
                }
            return snapshot

    def get_summary(self) -> Dict[str, Any]:
        """Totals across all operations."""
        with self._lock:
            total = sum(m.count for m in self._metrics.values())
            errors = sum(m.error_count for m in self._metrics.values())
            return {
                "uptime_seconds": (datetime.now(timezone.utc) - self._start_time).total_seconds(),
                "total_operations": total,
                "total_errors": errors,
                "overall_success_rate": (total - errors) / total if total else 1.0,
                "operations_tracked": sorted(self._metrics),
            }

    def reset(self) -> None:
        """Forget everything recorded so far."""
        with self._lock:
            self._metrics.clear()
            self._start_time = datetime.now(timezone.utc)
            self._unsaved = 0

    def _load(self) -> bool:
        if not self._metrics_file.exists():
            return False
        try:
            with open(self._metrics_file, "r", encoding="utf-8") as f:
                data = json.load(f)
            if "start_time" in data:
                self._start_time = datetime.fromisoformat(data["start_time"])
            for name, op_data in data.get("operations", {}).items():
                self._metrics[name] = OperationMetrics.from_dict(op_data)
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring unreadable metrics file {self._metrics_file}: {e}")
            return False

        logger.debug(f"Loaded metrics from {self._metrics_file}")
        return True

    def _save_unlocked(self) -> bool:
        data = {
            "start_time": self._start_time.isoformat(),
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "operations": {name: m.to_dict() for name, m in self._metrics.items()},
        }
        try:
            self._metrics_file.parent.mkdir(parents=True, exist_ok=True)
            # Write then rename so a crash never leaves a truncated file
            temp_file = self._metrics_file.with_suffix(".tmp")
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            temp_file.replace(self._metrics_file)
        except OSError as e:
            logger.error(f"Failed to save metrics to {self._metrics_file}: {e}")
            return False

        self._unsaved = 0
        return True

    def save_metrics(self) -> bool:
        """Write metrics to disk. Returns False if the write failed."""
        with self._lock:
            return self._save_unlocked()


# Global metrics collector instance
metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context: Any) -> Iterator[Dict[str, Any]]:
    """Time an operation, log its start and end, and record it in ``metrics``.

    Yields a dict the caller can fill with result details; they are
    included in the completion log line.

    Example:
        with timed_operation("flux_search_notes", query="draft") as op:
            results = service.notes.search("draft")
            op["result_count"] = len(results)
    """
    correlation_id = uuid.uuid4().hex[:8]
    started = time.perf_counter()
    result_info: Dict[str, Any] = {"correlation_id": correlation_id}

    context_str = ", ".join(f"{k}={v}" for k, v in context.items())
    logger.debug(f"[{correlation_id}] START {operation} ({context_str})")

    error_msg = None
    try:
        yield result_info
    except Exception as e:
        error_msg = str(e)
        raise
    finally:
        duration_ms = (time.perf_counter() - started) * 1000
        metrics.record_operation(operation, duration_ms, error_msg is None, error_msg)

        result_str = ", ".join(
            f"{k}={v}" for k, v in result_info.items() if k != "correlation_id"
        )
        status = "OK" if error_msg is None else f"ERROR: {error_msg}"
        logger.debug(
            f"[{correlation_id}] END {operation} ({duration_ms:.2f}ms) [{status}] {result_str}"
        )
