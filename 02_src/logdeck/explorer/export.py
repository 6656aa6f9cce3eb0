"""JSON and CSV export of log entries."""

import csv
import json
from pathlib import Path
from typing import Iterable, Union

from ..errors import ExportError
from ..logging_config import get_logger
from ..models import LogEntry, format_timestamp, parse_timestamp
from ..models.logs import EPOCH

logger = get_logger(__name__)

PathLike = Union[str, Path]

CSV_HEADER = ["timestamp", "level", "service", "message", "traceId"]


def _prepare(path: PathLike) -> Path:
    target = Path(path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ExportError(f"Cannot create directory for {target}: {e}") from e
    return target


def export_json(entries: Iterable[LogEntry], path: PathLike) -> int:
    """Write entries as a JSON array. Returns the number written."""
    rows = [entry.to_dict() for entry in entries]
    target = _prepare(path)
    try:
        with target.open("w", encoding="utf-8") as f:
            json.dump(rows, f, ensure_ascii=False, indent=2)
    except OSError as e:
        raise ExportError(f"Cannot write {target}: {e}") from e
    logger.info("Exported %d entries to %s", len(rows), target)
    return len(rows)


def export_csv(entries: Iterable[LogEntry], path: PathLike) -> int:
    """Write entries as RFC 4180 CSV. Returns the number written."""
    target = _prepare(path)
    count = 0
    try:
        # newline="" lets the csv module emit CRLF and quote embedded newlines
        with target.open("w", encoding="utf-8", newline="") as f:
            writer = csv.writer(f, quoting=csv.QUOTE_MINIMAL, lineterminator="\r\n")
            writer.writerow(CSV_HEADER)
            for entry in entries:
                writer.writerow(
                    [
                        format_timestamp(entry.timestamp),
                        entry.level,
                        entry.service,
                        entry.message,
                        entry.trace_id,
                    ]
                )
                count += 1
    except OSError as e:
        raise ExportError(f"Cannot write {target}: {e}") from e
    logger.info("Exported %d entries to %s", count, target)
    return count


def load_json(path: PathLike) -> list[LogEntry]:
    try:
        with Path(path).open("r", encoding="utf-8") as f:
            rows = json.load(f)
    except OSError as e:
        raise ExportError(f"Cannot read {path}: {e}") from e
    except ValueError as e:
        raise ExportError(f"{path} is not valid JSON: {e}") from e

    if not isinstance(rows, list) or not all(isinstance(row, dict) for row in rows):
        raise ExportError(f"{path} does not hold an array of log objects")
    return [LogEntry.from_dict(row) for row in rows]


def load_csv(path: PathLike) -> list[LogEntry]:
    try:
        with Path(path).open("r", encoding="utf-8", newline="") as f:
            reader = csv.DictReader(f)
            missing = [name for name in CSV_HEADER if name not in (reader.fieldnames or [])]
            if missing:
                raise ExportError(f"{path} lacks CSV columns {missing}")
            return [
                LogEntry(
                    timestamp=parse_timestamp(row["timestamp"]) or EPOCH,
                    level=row["level"] or "",
                    service=row["service"] or "",
                    message=row["message"] or "",
                    trace_id=row["traceId"] or "",
                )
                for row in reader
            ]
    except OSError as e:
        raise ExportError(f"Cannot read {path}: {e}") from e
    except (csv.Error, UnicodeDecodeError) as e:
        raise ExportError(f"{path} is not valid CSV: {e}") from e
