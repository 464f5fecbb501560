"""Run manifest describing how a model build can be reproduced."""

from __future__ import annotations

import json
import platform
import time
from pathlib import Path
from typing import Dict, Mapping, Optional

import numpy as np
import yaml

from .metrics import _git_sha


def _environment() -> Dict[str, str]:
    return {
        "python": platform.python_version(),
        "platform": platform.platform(terse=True),
        "numpy": np.__version__,
        "pyyaml": yaml.__version__,
    }


def write_manifest(
    path: str | Path,
    *,
    config: Mapping[str, object],
    dataset_provenance: Mapping[str, object],
    outcome: Optional[Mapping[str, object]] = None,
) -> str:
    """Write ``manifest.json`` with the build config, data shape and outcome.

    ``outcome`` carries what the build selected (best attempt, confidence
    figures) and is omitted when the manifest is written before building.
    """

    from .. import __version__

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    manifest: Dict[str, object] = {
        "easyml": __version__,
        "git_sha": _git_sha(),
        "generated_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        "config": dict(config),
        "dataset": dict(dataset_provenance),
        "environment": _environment(),
    }
    if outcome is not None:
        manifest["outcome"] = dict(outcome)
    target.write_text(json.dumps(manifest, indent=2))
    return str(target)


__all__ = ["write_manifest"]
