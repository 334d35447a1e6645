"""Logging setup and the durable per-run operation log."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

# Set up module logger
logger = logging.getLogger(__name__)

ENTITY_TYPES = ("categories", "products", "images")


def setup_logging(debug: bool = False, label: str | None = None, logs_dir: Path | None = None) -> Path | None:
    """Configure logging for the application.

    Args:
        debug: If True, enable debug-level file logging
        label: Prefix for the log filename (optional)
        logs_dir: Directory for the debug log (defaults to logs/)

    Returns:
        Path to debug log file if created, None otherwise
    """
    # Base logger for the vitrine_clone package
    root_logger = logging.getLogger("vitrine_clone")
    if root_logger.level == logging.NOTSET:
        root_logger.setLevel(logging.INFO)

    if debug:
        logs_dir = get_logs_dir(logs_dir)
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d-%H%M%S")

        if label:
            log_filename = f"debug-{label}-{timestamp}.log"
        else:
            log_filename = f"debug-{timestamp}.log"

        log_path = logs_dir / log_filename

        # File handler for debug output
        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        root_logger.addHandler(file_handler)
        root_logger.setLevel(logging.DEBUG)

        return log_path

    return None


def get_logs_dir(logs_dir: Path | None = None) -> Path:
    """Get or create the logs directory.

    Returns:
        Path to the logs directory
    """
    logs_dir = Path(logs_dir) if logs_dir else Path.cwd() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir


class CloneLogger:
    """Incremental operation log for clone runs.

    Creates a log file immediately and rewrites it as items complete, so a
    run that dies half-way still leaves a record of what was written.
    - Success: minimal info (ids, identifier)
    - Failure: error message, classification, and the payload that was sent
    """

    def __init__(
        self,
        source_id: str,
        target_id: str,
        options: dict[str, Any] | None = None,
        output_dir: Path | None = None,
    ):
        """Initialize logger and create the log file.

        Args:
            source_id: Source account id
            target_id: Target account id
            options: Clone options as sent by the caller
            output_dir: Directory for log file (defaults to logs/)
        """
        output_dir = get_logs_dir(output_dir)

        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d-%H%M%S")
        # Format: clone-{source}-to-{target}-{timestamp}.json
        filename = f"clone-{source_id[:8]}-to-{target_id[:8]}-{timestamp}.json"
        self.filepath = output_dir / filename
        self.source_id = source_id
        self.target_id = target_id

        self._data: dict[str, Any] = {
            "metadata": {
                "started_at": datetime.now(timezone.utc).isoformat(),
                "source_id": source_id,
                "target_id": target_id,
                "options": options or {},
                "status": "in_progress",
            },
            "summary": {entity: {"success": 0, "failed": 0} for entity in ENTITY_TYPES},
            "error_summary": {entity: {} for entity in ENTITY_TYPES},
            "operations": [],
        }
        self._write()

    def _write(self) -> None:
        """Write current state to file."""
        try:
            with open(self.filepath, "w") as f:
                json.dump(self._data, f, indent=2, default=str)
        except OSError as e:
            logger.error("Could not write operation log %s: %s", self.filepath, e)

    def log_success(
        self,
        entity_type: str,
        source_id: str | None,
        new_id: str | None,
        identifier: str | None = None,
        count: int = 1,
    ) -> None:
        """Log a successful operation.

        Args:
            entity_type: categories, products or images
            source_id: Id in the source account
            new_id: Id (or URL) in the target account
            identifier: Human-readable identifier (title, name, URL)
            count: Number of rows written (category batches insert several)
        """
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "status": "success",
            "entity_type": entity_type,
            "source_id": source_id,
            "new_id": new_id,
        }
        if identifier:
            entry["identifier"] = identifier
        if count != 1:
            entry["count"] = count

        self._data["operations"].append(entry)
        self._data["summary"][entity_type]["success"] += count
        self._write()

    def log_failure(
        self,
        entity_type: str,
        source_id: str | None,
        error_message: str,
        error_type: str = "unknown",
        request_payload: dict | list | None = None,
        identifier: str | None = None,
    ) -> None:
        """Log a failed operation with full details for debugging.

        Args:
            entity_type: categories, products or images
            source_id: Id in the source account
            error_message: Error message
            error_type: Category of error (duplicate, validation, permission, etc.)
            request_payload: Payload that was sent to the store
            identifier: Human-readable identifier (title, name, URL)
        """
        entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "status": "failed",
            "entity_type": entity_type,
            "source_id": source_id,
            "error": error_message,
            "error_type": error_type,
        }
        if identifier:
            entry["identifier"] = identifier
        if request_payload:
            entry["request_payload"] = request_payload

        self._data["operations"].append(entry)
        self._data["summary"][entity_type]["failed"] += 1

        error_counts = self._data["error_summary"][entity_type]
        error_counts[error_type] = error_counts.get(error_type, 0) + 1
        self._write()

    def get_summary(self) -> dict[str, dict[str, int]]:
        """Success/failure counts per entity type."""
        return self._data["summary"]

    def get_error_summary(self) -> dict[str, dict[str, int]]:
        """Get error counts by type for each entity.

        Returns:
            Dict mapping entity_type -> error_type -> count
            Example: {"products": {"duplicate": 5, "validation": 2}}
        """
        return self._data["error_summary"]

    def complete(self, status: str = "completed", report: dict | None = None) -> str:
        """Mark the clone operation as finished.

        Args:
            status: Final status (completed, failed, timeout)
            report: Final report returned to the caller

        Returns:
            Path to the log file
        """
        self._data["metadata"]["completed_at"] = datetime.now(timezone.utc).isoformat()
        self._data["metadata"]["status"] = status
        if report is not None:
            self._data["report"] = report
        self._write()
        return str(self.filepath)
