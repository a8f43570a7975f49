"""Logging and per-operation metrics for the memo store.

Store operations are timed with :func:`timed_operation` or the
:func:`traced` decorator. Each run records its duration and outcome in the
module-level :data:`metrics` collector and logs a START/END pair tagged
with a short correlation id, so one tracker round trip can be followed
through the debug log.
"""
import functools
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
from typing import Any, Callable, Dict, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

DEFAULT_LOG_DIR = Path.home() / ".issuememo" / "logs"
DEFAULT_METRICS_FILE = Path.home() / ".issuememo" / "metrics.json"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

ROOT_LOGGER = "issuememo_mcp"

F = TypeVar('F', bound=Callable[..., Any])


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    console: bool = True,
) -> Path:
    """Attach a rotating ``issuememo.log`` (and optionally stderr) to the package logger.

    Calling this again with the same directory does not add a second file
    handler.

    Args:
        log_dir: Directory for log files. Defaults to ~/.issuememo/logs/
        level: Level for the package logger and its handlers
        max_bytes: Size at which the log file is rotated
        backup_count: Number of rotated files to keep
        console: Also log to stderr

    Returns:
        The log directory.
    """
    log_path = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)

    package_logger = logging.getLogger(ROOT_LOGGER)
    package_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    log_file = log_path / "issuememo.log"
    if not any(
        isinstance(h, RotatingFileHandler) and Path(h.baseFilename) == log_file.absolute()
        for h in package_logger.handlers
    ):
        file_handler = RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)

    if console and not any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, RotatingFileHandler)
        for h in package_logger.handlers
    ):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        package_logger.addHandler(console_handler)

    package_logger.info(f"Logging to {log_file} (rotating at {max_bytes} bytes, {backup_count} kept)")
    return log_path


@dataclass
class OperationMetrics:
    count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_duration_ms: float = 0.0
    min_duration_ms: float = float('inf')
    max_duration_ms: float = 0.0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None


class MetricsCollector:
    """Thread-safe counters and timings keyed by operation name."""

    def __init__(self, metrics_file: Optional[Union[str, Path]] = None):
        self._metrics: Dict[str, OperationMetrics] = defaultdict(OperationMetrics)
        self._lock = Lock()
        self._start_time = datetime.now(timezone.utc)
        self._metrics_file = Path(metrics_file) if metrics_file else DEFAULT_METRICS_FILE

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None
    ) -> None:
        with self._lock:
            m = self._metrics[operation]
            m.count += 1
            m.total_duration_ms += duration_ms
            m.min_duration_ms = min(m.min_duration_ms, duration_ms)
            m.max_duration_ms = max(m.max_duration_ms, duration_ms)
            if success:
                m.success_count += 1
            else:
                m.error_count += 1
                m.last_error = error
                m.last_error_time = datetime.now(timezone.utc)

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Per-operation snapshot, as written by :meth:`save_metrics`."""
        with self._lock:
            result = {}
            for op, m in self._metrics.items():
                result[op] = {
                    'count': m.count,
                    'success_count': m.success_count,
                    'error_count': m.error_count,
                    'avg_duration_ms': round(m.total_duration_ms / m.count, 2) if m.count else 0,
                    'min_duration_ms': round(m.min_duration_ms, 2) if m.count else 0,
                    'max_duration_ms': round(m.max_duration_ms, 2),
                    'last_error': m.last_error,
                    'last_error_time': m.last_error_time.isoformat() if m.last_error_time else None
                }
            return result

    def get_summary(self, exclude_prefix: Optional[str] = None) -> Dict[str, Any]:
        """Totals across operations, skipping names that start with ``exclude_prefix``."""
        with self._lock:
            counted = [
                m for op, m in self._metrics.items()
                if not (exclude_prefix and op.startswith(exclude_prefix))
            ]
            total_ops = sum(m.count for m in counted)
            total_errors = sum(m.error_count for m in counted)
            return {
                'uptime_seconds': (datetime.now(timezone.utc) - self._start_time).total_seconds(),
                'total_operations': total_ops,
                'total_errors': total_errors,
                'overall_success_rate': (total_ops - total_errors) / total_ops if total_ops else 1.0,
            }

    def reset(self) -> None:
        with self._lock:
            self._metrics.clear()
            self._start_time = datetime.now(timezone.utc)

    def save_metrics(self) -> bool:
        """Write the snapshot to the metrics file through a temp file and rename.

        Returns:
            False when the file could not be written.
        """
        data = {
            "start_time": self._start_time.isoformat(),
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "operations": self.get_metrics(),
        }
        try:
            self._metrics_file.parent.mkdir(parents=True, exist_ok=True)
            temp_file = self._metrics_file.with_suffix(".tmp")
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            temp_file.replace(self._metrics_file)
            return True
        except (OSError, TypeError) as e:
            logger.error(f"Failed to save metrics to {self._metrics_file}: {e}")
            return False


metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context):
    """Time a block and record it under ``operation``.

    Yields a dict; keys stored in it are appended to the END log line.
    An exception marks the run as failed and is re-raised.

    Example:
        with timed_operation('memo_list', filter=expr) as op:
            response = repo.list(filter=expr)
            op['result_count'] = len(response.memos)
    """
    correlation_id = uuid.uuid4().hex[:8]
    start_time = time.perf_counter()
    result_info: Dict[str, Any] = {'correlation_id': correlation_id}

    context_str = ', '.join(f'{k}={v}' for k, v in context.items())
    logger.debug(f"[{correlation_id}] START {operation} ({context_str})")

    error_msg = None
    success = True
    try:
        yield result_info
    except Exception as e:
        success = False
        error_msg = str(e)
        raise
    finally:
        duration_ms = (time.perf_counter() - start_time) * 1000
        metrics.record_operation(operation, duration_ms, success, error_msg)

        result_str = ', '.join(f'{k}={v}' for k, v in result_info.items() if k != 'correlation_id')
        status = 'OK' if success else f'ERROR: {error_msg}'
        logger.debug(
            f"[{correlation_id}] END {operation} ({duration_ms:.2f}ms) [{status}] {result_str}"
        )


def traced(operation_name: Optional[str] = None) -> Callable[[F], F]:
    """Run the decorated method inside :func:`timed_operation`.

    The first positional argument after ``self`` (usually a resource name)
    is logged as context. Defaults to the function name.
    """
    def decorator(func: F) -> F:
        op_name = operation_name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            context = {}
            if 'name' in kwargs:
                context["name"] = kwargs["name"]
            elif len(args) > 1 and isinstance(args[1], (str, int)):
                context["name"] = str(args[1])[:50]

            with timed_operation(op_name, **context) as op:
                result = func(*args, **kwargs)
                if isinstance(result, (list, tuple)):
                    op['result_count'] = len(result)
                elif result is not None:
                    op['has_result'] = True
                return result

        return wrapper  # type: ignore
    return decorator
