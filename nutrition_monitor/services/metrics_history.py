"""Daily JSONL files of persisted metrics snapshots.

One line is appended per realtime collection tick to
``metrics-<YYYY-MM-DD>.jsonl``. A file that grows past the size limit is renamed
with a timestamp suffix and a fresh file starts on the next append. Reading is
a plain scan; there is no index.
"""

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from nutrition_monitor.lib.structured_logger import StructuredLogger
from nutrition_monitor.lib.time_utils import day_stamp, parse_iso, utc_now
from nutrition_monitor.models.snapshot import PersistedMetricsSnapshot

logger = StructuredLogger(__name__)

MAX_FILE_SIZE = 10 * 1024 * 1024

_UNDATED = datetime.min.replace(tzinfo=timezone.utc)


def _timestamp_key(record: Dict[str, Any]) -> datetime:
    """Chronological sort key; records without a readable timestamp sort first."""
    try:
        return parse_iso(str(record['timestamp']))
    except (KeyError, ValueError):
        return _UNDATED


class MetricsHistory:
    """Append-and-scan store for PersistedMetricsSnapshot lines."""

    def __init__(self, data_dir: Path | str, max_file_size: int = MAX_FILE_SIZE):
        """Initialize the store.

        Args:
            data_dir: Directory holding the metrics-<date>.jsonl files
            max_file_size: Size in bytes past which the day's file is rotated
        """
        self.data_dir = Path(data_dir)
        self.max_file_size = max_file_size

    def path_for(self, day: str) -> Path:
        return self.data_dir / f'metrics-{day}.jsonl'

    def store_metrics(self, snapshot: PersistedMetricsSnapshot) -> Optional[Path]:
        """Append one snapshot to today's file.

        Failures are logged and swallowed.

        Returns:
            Path written to, or None if the write failed
        """
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            metrics_file = self.path_for(day_stamp())
            with open(metrics_file, 'a', encoding='utf-8') as f:
                f.write(snapshot.model_dump_json() + '\n')

            if metrics_file.stat().st_size > self.max_file_size:
                self.rotate_metrics_file(metrics_file)
            return metrics_file
        except OSError as e:
            logger.error(f'Failed to store metrics: {e}')
            return None

    def rotate_metrics_file(self, metrics_file: Path) -> Optional[Path]:
        """Rename ``metrics-<day>.jsonl`` to ``metrics-<day>-<timestamp>.jsonl``."""
        stamp = utc_now().strftime('%Y-%m-%dT%H-%M-%S-%f')
        rotated = metrics_file.with_name(f'{metrics_file.stem}-{stamp}{metrics_file.suffix}')
        try:
            metrics_file.replace(rotated)
            logger.info('Metrics file rotated', rotated_path=str(rotated))
            return rotated
        except OSError as e:
            logger.error(f'Failed to rotate metrics file: {e}')
            return None

    def files_for_day(self, day: str) -> List[Path]:
        """Today's live file plus any size-rotated files from the same day."""
        if not self.data_dir.exists():
            return []
        live = self.path_for(day)
        rotated = sorted(self.data_dir.glob(f'metrics-{day}-*.jsonl'))
        return rotated + ([live] if live.exists() else [])

    def get_historical_metrics(self, days: int = 7) -> List[Dict[str, Any]]:
        """Read the last ``days`` days of snapshots, oldest first.

        Malformed lines are skipped. Records come back as plain dicts in the
        persisted (reduced) shape.
        """
        records: List[Dict[str, Any]] = []
        today = utc_now()

        for offset in range(max(days, 0)):
            day = day_stamp(today - timedelta(days=offset))
            for metrics_file in self.files_for_day(day):
                records.extend(self._read_file(metrics_file))

        return sorted(records, key=_timestamp_key)

    def _read_file(self, metrics_file: Path) -> List[Dict[str, Any]]:
        records = []
        try:
            with open(metrics_file, encoding='utf-8') as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        record = json.loads(line)
                    except json.JSONDecodeError:
                        continue
                    if isinstance(record, dict):
                        records.append(record)
        except OSError as e:
            logger.error(f'Failed to load historical metrics: {e}', metrics_file=str(metrics_file))
        return records
