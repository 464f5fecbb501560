"""Progress sinks that persist one record per reported build epoch.

Both sinks accept the flat numeric payload produced by
``BuildProgress.metrics()``. Attempt numbers arrive as floats inside that
payload and are written back as integer columns so rows of different
attempts stay distinguishable.
"""

from __future__ import annotations

import csv
import json
import subprocess
from pathlib import Path
from typing import Dict, List, Mapping

_LEADING_COLUMNS = ("attempt", "epoch", "split")


def _git_sha() -> str:
    try:
        out = subprocess.check_output(["git", "rev-parse", "HEAD"], stderr=subprocess.DEVNULL)
        return out.decode().strip()
    except (OSError, subprocess.CalledProcessError):  # pragma: no cover - git may be unavailable
        return "unknown"


def progress_record(epoch: int, metrics: Mapping[str, object], split: str) -> Dict[str, object]:
    """Flatten a progress payload: ids first, then numeric metrics by name."""

    record: Dict[str, object] = {}
    if "attempt" in metrics:
        record["attempt"] = int(metrics["attempt"])
    record["epoch"] = int(epoch)
    record["split"] = split
    for key in sorted(metrics):
        value = metrics[key]
        if key == "attempt" or isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        record[key] = float(value)
    return record


class _EpochSink:
    def __init__(self, path: str | Path, split: str) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text("")
        self.split = split
        self.records_written = 0

    def on_epoch(self, epoch: int, metrics: Mapping[str, object]) -> None:
        self._write(progress_record(epoch, metrics, self.split))
        self.records_written += 1

    def __call__(self, epoch: int, metrics: Mapping[str, object]) -> None:
        self.on_epoch(epoch, metrics)

    def _write(self, record: Dict[str, object]) -> None:
        raise NotImplementedError


class JsonlSink(_EpochSink):
    """JSON lines log tagged with the run seed and the source revision."""

    def __init__(
        self,
        path: str | Path,
        *,
        split: str = "train",
        seed: int | None = None,
        sha: str | None = None,
    ) -> None:
        super().__init__(path, split)
        self.seed = seed
        self.sha = sha or _git_sha()

    def _write(self, record: Dict[str, object]) -> None:
        record = {**record, "seed": self.seed, "sha": self.sha}
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(record) + "\n")


class CsvSink(_EpochSink):
    """CSV table whose header is taken from the first record."""

    def __init__(self, path: str | Path, *, split: str = "train") -> None:
        super().__init__(path, split)
        self.columns: List[str] | None = None

    def _write(self, record: Dict[str, object]) -> None:
        header = self.columns is None
        if header:
            ids = [name for name in _LEADING_COLUMNS if name in record]
            self.columns = ids + [name for name in record if name not in _LEADING_COLUMNS]
        with self.path.open("a", encoding="utf-8", newline="") as handle:
            writer = csv.DictWriter(handle, fieldnames=self.columns, extrasaction="ignore")
            if header:
                writer.writeheader()
            writer.writerow(record)


__all__ = ["CsvSink", "JsonlSink", "progress_record"]
