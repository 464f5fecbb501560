"""Deterministic summaries of per-epoch metric logs."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable, List, Mapping, Sequence

import numpy as np

_SKIPPED_KEYS = {"attempt", "epoch", "seed"}


def tail_auc(points: Sequence[float]) -> float:
    """Trapezoidal area under ``points`` along a unit-step axis."""

    if len(points) < 2:
        return 0.0
    y = np.asarray(points, dtype=np.float64)
    return float(np.sum((y[1:] + y[:-1]) * 0.5))


def _numeric_series(records: Iterable[Mapping[str, object]]) -> Mapping[str, List[float]]:
    series: dict[str, List[float]] = {}
    for record in records:
        for key, value in record.items():
            if key in _SKIPPED_KEYS or isinstance(value, bool):
                continue
            if isinstance(value, (int, float)):
                series.setdefault(key, []).append(float(value))
    return series


def summarize(records: Sequence[Mapping[str, object]], tail: int = 32) -> Mapping[str, object]:
    window = min(tail, len(records)) if records else 0
    metrics: dict[str, Mapping[str, float]] = {}
    for name, values in _numeric_series(records).items():
        arr = np.asarray(values, dtype=np.float64)
        tail_arr = arr[-window:] if window else arr[:0]
        metrics[name] = {
            "min": float(np.min(arr)),
            "max": float(np.max(arr)),
            "mean": float(np.mean(arr)),
            "last": float(arr[-1]),
            "tail_auc": tail_auc(tail_arr.tolist()),
        }
    last_epoch = int(records[-1].get("epoch", 0)) if records else 0
    return {
        "version": 1,
        "records": len(records),
        "last_epoch": last_epoch,
        "attempts": len({record.get("attempt", 1) for record in records}),
        "tail_window": window,
        "metrics": metrics,
    }


def write_summary(metrics_jsonl: str | Path, out_summary_json: str | Path, *, tail: int = 32) -> str:
    """Summarize a JSON lines metrics log into ``out_summary_json``."""

    metrics_path = Path(metrics_jsonl)
    out_path = Path(out_summary_json)
    out_path.parent.mkdir(parents=True, exist_ok=True)

    records: list[Mapping[str, object]] = []
    if metrics_path.exists():
        for line in metrics_path.read_text().splitlines():
            line = line.strip()
            if line:
                records.append(json.loads(line))

    out_path.write_text(json.dumps(summarize(records, tail), sort_keys=True, indent=2))
    return str(out_path)


__all__ = ["summarize", "tail_auc", "write_summary"]
