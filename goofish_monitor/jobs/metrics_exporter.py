"""Metrics exporter for observability."""
import time
from pathlib import Path
from typing import Any, Optional

import aiofiles
import orjson

from goofish_monitor.config import METRICS_FILE


class MetricsExporter:
    """Appends supervisor health snapshots to a JSONL file."""

    def __init__(self, metrics_file: Optional[Path] = None):
        self.metrics_file = metrics_file or METRICS_FILE
        self.start_time = time.time()

    async def export_metrics(self, stats: dict[str, Any]) -> None:
        """Write one line with a timestamp and the given statistics."""
        record = {"ts": time.time(), "since_start": round(time.time() - self.start_time, 1), **stats}
        line = orjson.dumps(record, option=orjson.OPT_NON_STR_KEYS) + b"\n"
        self.metrics_file.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(self.metrics_file, "ab") as f:
            await f.write(line)
