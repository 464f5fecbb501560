"""Command line entry point for easyml network model builds."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Iterable

from easyml.data.dataset import SampleDataset
from easyml.training import pipelines
from easyml.training.config import load_config


def _format_result(result) -> str:
    payload = {
        "run_dir": result.run_dir,
        "metrics": result.metrics_path,
        "manifest": result.manifest_path,
        "summary": result.summary_path,
        "model": result.model_path,
    }
    return json.dumps(payload, sort_keys=True)


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    preset_names = sorted(pipelines.presets().keys())
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--preset",
        choices=preset_names,
        default="regression-small",
        help="Preset configuration to start from",
    )
    parser.add_argument(
        "--config", type=Path, help="Optional JSON/YAML config override"
    )
    parser.add_argument(
        "--data",
        type=Path,
        help="Training samples as .npz with 'inputs' and 'outputs' arrays",
    )
    parser.add_argument(
        "--validation", type=Path, help="Optional validation samples (.npz)"
    )
    parser.add_argument("--seed", type=int, help="Seed used for training")
    parser.add_argument("--run-dir", type=Path, help="Directory receiving artifacts")
    parser.add_argument(
        "--checkpoints",
        action="store_true",
        help="Write best/last weight checkpoints into the run directory",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )
    parser.add_argument(
        "--list-presets", action="store_true", help="List available presets and exit"
    )
    parser.add_argument(
        "--dump-config", type=Path, help="Dump the resolved config to a JSON file"
    )
    return parser.parse_args(argv)


def _merge(base: dict, override: dict) -> dict:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _merge(dict(base[key]), value)
        else:
            base[key] = value
    return base


def main(argv: Iterable[str] | None = None) -> None:
    args = parse_args(argv)

    if args.list_presets:
        for name in sorted(pipelines.presets().keys()):
            print(name)
        raise SystemExit(0)

    if args.data is None:
        raise SystemExit("--data is required unless --list-presets is given")

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = json.loads(json.dumps(pipelines.load_preset(args.preset)))
    if args.config:
        override = json.loads(json.dumps(load_config(args.config)))
        if {"task_type", "model"} <= set(override.keys()):
            config = override
        else:
            config = _merge(config, override)

    train_cfg = config.setdefault("train", {})
    if args.seed is not None:
        train_cfg["seed"] = int(args.seed)
    if args.run_dir is not None:
        train_cfg["run_dir"] = str(args.run_dir)
    if args.checkpoints:
        train_cfg["checkpoints"] = True

    if args.dump_config:
        args.dump_config.parent.mkdir(parents=True, exist_ok=True)
        args.dump_config.write_text(json.dumps(config, indent=2))

    training = SampleDataset.load(args.data)
    validation = SampleDataset.load(args.validation) if args.validation else None
    result = pipelines.run_pipeline(config, training, validation)
    print(_format_result(result))


if __name__ == "__main__":
    main()
