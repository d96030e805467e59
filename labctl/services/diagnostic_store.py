"""
Diagnostic Store
================
Persists RebuildReports as JSON files so failed rebuilds can be
re-diagnosed later.

File layout:
    {base_dir}/{YYYYMMDD-HHMMSS}-{id}.json   (timestamp = report start, UTC)

Filenames sort chronologically, so listing is a reverse filename sort.
Every save() prunes reports older than the retention window; pruning
problems are logged, never raised.
"""
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional, Union

from pydantic import ValidationError

from labctl.core.constants import REPORT_TIMESTAMP_FORMAT
from labctl.core.errors import PersistenceError, ReportNotFoundError
from labctl.models.rebuild_report import RebuildReport

logger = logging.getLogger(__name__)

_TIMESTAMP_LENGTH = len("YYYYMMDD-HHMMSS")


class DiagnosticStore:
    """Filesystem-backed report store."""

    def __init__(self, base_dir: Union[str, Path], retention_days: int = 7) -> None:
        self.base_dir = Path(base_dir)
        self.retention = timedelta(days=retention_days)

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------
    def save(self, report: RebuildReport) -> Path:
        """
        Write ``report`` to disk.

        Returns
        -------
        Path
            Location of the written file.

        Raises
        ------
        PersistenceError
            The directory or file could not be written.
        """
        start = report.start_time.astimezone(timezone.utc)
        path = self.base_dir / f"{start.strftime(REPORT_TIMESTAMP_FORMAT)}-{report.id}.json"

        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(report.model_dump_json(indent=2), encoding="utf-8")
        except (OSError, ValueError) as e:
            raise PersistenceError(f"failed to save report {report.id}: {e}") from e

        logger.debug("Saved diagnostic report %s to %s", report.id, path.name)

        try:
            self.cleanup()
        except OSError as e:
            logger.warning("Failed to clean up old diagnostic reports: %s", e)

        return path

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------
    def _report_files(self) -> List[Path]:
        """JSON report files, newest first."""
        if not self.base_dir.is_dir():
            return []
        files = [p for p in self.base_dir.iterdir() if p.is_file() and p.suffix == ".json"]
        return sorted(files, key=lambda p: p.name, reverse=True)

    @staticmethod
    def _read(path: Path) -> RebuildReport:
        return RebuildReport.model_validate_json(path.read_text(encoding="utf-8"))

    def load(self, report_id: str) -> RebuildReport:
        """Load the report whose filename carries ``report_id``."""
        for path in self._report_files():
            if path.stem.endswith(f"-{report_id}"):
                try:
                    return self._read(path)
                except (OSError, ValidationError) as e:
                    raise PersistenceError(f"failed to read report {report_id}: {e}") from e
        raise ReportNotFoundError(f"report not found: {report_id}")

    def list(self, limit: int = 0, service: Optional[str] = None) -> List[RebuildReport]:
        """
        Stored reports, newest first.

        Parameters
        ----------
        limit : int
            Maximum number of reports; 0 means no limit.
        service : str | None
            Only reports that contain a step for this service.
        """
        reports: List[RebuildReport] = []

        for path in self._report_files():
            try:
                report = self._read(path)
            except (OSError, ValidationError) as e:
                logger.warning("Skipping unreadable report %s: %s", path.name, e)
                continue

            if service and not any(r.service == service for r in report.results):
                continue

            reports.append(report)
            if limit > 0 and len(reports) >= limit:
                break

        logger.debug("Listed %d diagnostic reports", len(reports))
        return reports

    def latest(self) -> RebuildReport:
        reports = self.list(limit=1)
        if not reports:
            raise ReportNotFoundError("no reports found")
        return reports[0]

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------
    def cleanup(self, retention: Optional[timedelta] = None) -> int:
        """Remove reports older than ``retention``; returns how many were removed."""
        retention = retention if retention is not None else self.retention
        cutoff = datetime.now(timezone.utc) - retention
        removed = 0

        for path in self._report_files():
            stamp = path.name[:_TIMESTAMP_LENGTH]
            try:
                file_time = datetime.strptime(stamp, REPORT_TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
            except ValueError:
                logger.warning("Cannot parse timestamp from %s, skipping", path.name)
                continue

            if file_time < cutoff:
                try:
                    path.unlink()
                except OSError as e:
                    logger.warning("Failed to remove old report %s: %s", path.name, e)
                    continue
                removed += 1

        if removed:
            logger.info("Cleaned up %d diagnostic reports older than %s", removed, retention)
        return removed
