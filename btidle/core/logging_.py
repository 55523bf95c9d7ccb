from __future__ import annotations

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from btidle.core.errors import LogRotationError
from btidle.shared.paths import log_path, ensure_app_dirs


class IsoFormatter(logging.Formatter):
    """Formatter whose %(asctime)s is a local ISO-8601 timestamp with offset."""

    def formatTime(self, record: logging.LogRecord, datefmt: Optional[str] = None) -> str:
        return datetime.fromtimestamp(record.created).astimezone().isoformat(timespec="seconds")


def _entry_timestamp(line: str) -> Optional[datetime]:
    head, sep, _ = line.partition(" - ")
    if not sep:
        return None
    try:
        return datetime.fromisoformat(head.strip()).astimezone()
    except ValueError:
        return None


class AgePurgingFileHandler(logging.FileHandler):
    """
    Append-only activity log, trimmed by entry age instead of size.

    Lines look like ``<ISO-8601 timestamp> - <message>``. Lines without a
    timestamp (tracebacks) belong to the entry above them.
    """

    def __init__(self, filename: str | Path, encoding: str = "utf-8") -> None:
        super().__init__(str(filename), mode="a", encoding=encoding)

    def purge_older_than(self, days: int, now: Optional[datetime] = None) -> int:
        """Drop entries older than `days`. Returns the number of removed lines."""
        now = (now or datetime.now()).astimezone()
        cutoff = now - timedelta(days=days)
        path = Path(self.baseFilename)

        self.acquire()
        try:
            # Reopened lazily by the next emit()
            if self.stream is not None:
                self.stream.flush()
                self.stream.close()
                self.stream = None

            if not path.exists():
                return 0

            lines = path.read_text(encoding=self.encoding, errors="replace").splitlines(keepends=True)
            kept: list[str] = []
            keep_entry = True
            for line in lines:
                ts = _entry_timestamp(line)
                if ts is not None:
                    keep_entry = ts >= cutoff
                if keep_entry:
                    kept.append(line)

            dropped = len(lines) - len(kept)
            if dropped:
                path.write_text("".join(kept), encoding=self.encoding)
            return dropped
        except OSError as e:
            raise LogRotationError(f"Failed to purge {path}: {e}") from e
        finally:
            self.release()


def setup_logging(path: Optional[Path] = None) -> AgePurgingFileHandler:
    root = logging.getLogger()
    root.setLevel(logging.INFO)

    for h in root.handlers:
        if isinstance(h, AgePurgingFileHandler):
            return h

    if path is None:
        ensure_app_dirs()
        path = log_path()

    ch = logging.StreamHandler()
    ch.setLevel(logging.INFO)
    ch.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s"))
    root.addHandler(ch)

    fh = AgePurgingFileHandler(path)
    fh.setLevel(logging.INFO)
    fh.setFormatter(IsoFormatter("%(asctime)s - %(message)s"))
    root.addHandler(fh)
    return fh
