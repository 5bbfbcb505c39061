#!/usr/bin/env python3
"""
Run Context - per-run logging and artifacts for the Value Matrix CLI.

Provides:
  - run_id generation (UUID4, 12 hex chars)
  - Structured JSON-lines logging for every ``matrix.*`` logger
  - Config snapshot saving
  - Record-set artifacts (plottable / outliers) as JSON
  - Run metadata (timestamps, versions, counts)

Usage:
    ctx = RunContext()                     # creates runs/{run_id}/
    ctx.save_config(cfg)                   # snapshot validated RunConfig
    ctx.save_artifact("outliers", df)      # save an intermediate record set
    ctx.log.info("message", extra={"count": 3})
    ctx.save_metadata({...})               # final run metadata
"""

import json
import logging
import platform
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path

import pandas as pd
import yaml

from schemas import RunConfig

ROOT = Path(__file__).resolve().parent
RUNS_DIR = ROOT / "runs"

_EXTRA_KEYS = ("run_id", "phase", "step", "count", "generation", "status_code")


class _JSONFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "func": record.funcName,
            "msg": record.getMessage(),
        }
        for key in _EXTRA_KEYS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val
        return json.dumps(entry, default=str)


class RunContext:
    """Manages one CLI run's directory, logging and artifacts."""

    def __init__(self, run_id: str | None = None, runs_dir: Path | None = None,
                 console_level: int = logging.INFO):
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self.start_time = datetime.now()
        self.run_dir = Path(runs_dir or RUNS_DIR) / self.run_id
        self.run_dir.mkdir(parents=True, exist_ok=True)

        # Handlers live on the package logger so matrix.engine /
        # matrix.pipeline / matrix.relay all land in the same run log
        root = logging.getLogger("matrix")
        root.setLevel(logging.DEBUG)
        root.propagate = False
        root.handlers.clear()

        fh = logging.FileHandler(str(self.run_dir / "run.log"), encoding="utf-8")
        fh.setFormatter(_JSONFormatter())
        root.addHandler(fh)

        ch = logging.StreamHandler(sys.stdout)
        ch.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(message)s", datefmt="%H:%M:%S"))
        ch.setLevel(console_level)
        root.addHandler(ch)

        self.log = logging.getLogger("matrix.run")
        self.log.info("Run started", extra={"run_id": self.run_id})

    def close(self):
        """Detach and close this run's handlers."""
        root = logging.getLogger("matrix")
        for h in list(root.handlers):
            h.close()
            root.removeHandler(h)
        root.propagate = True

    def save_config(self, cfg: RunConfig) -> Path:
        """Save a snapshot of the validated config used for this run."""
        path = self.run_dir / "config.yaml"
        with open(path, "w") as f:
            yaml.safe_dump(cfg.model_dump(mode="json"), f,
                           default_flow_style=False, sort_keys=False)
        self.log.info("Config snapshot saved", extra={"phase": "init"})
        return path

    def save_artifact(self, name: str, df: pd.DataFrame) -> Path:
        """Save an intermediate record set as a JSON array."""
        path = self.run_dir / f"{name}.json"
        df.to_json(str(path), orient="records", indent=2)
        self.log.info(f"Artifact saved: {name} ({len(df)} rows)",
                      extra={"phase": "artifact", "step": name, "count": len(df)})
        return path

    def save_metadata(self, extra: dict | None = None) -> Path:
        """Save run metadata (call at end of run)."""
        end_time = datetime.now()
        meta = {
            "run_id": self.run_id,
            "start_time": self.start_time.isoformat(),
            "end_time": end_time.isoformat(),
            "elapsed_seconds": round((end_time - self.start_time).total_seconds(), 1),
            "python_version": sys.version,
            "platform": platform.platform(),
            "packages": _get_package_versions(),
        }
        if extra:
            meta.update(extra)
        path = self.run_dir / "meta.json"
        with open(path, "w") as f:
            json.dump(meta, f, indent=2, default=str)
        self.log.info("Run metadata saved", extra={"run_id": self.run_id})
        return path


def _get_package_versions() -> dict:
    """Versions of key dependencies, 'unknown' when not installed."""
    import importlib.metadata

    versions = {}
    for pkg in ["pandas", "numpy", "pydantic", "pyyaml", "requests",
                "openpyxl", "fastapi"]:
        try:
            versions[pkg] = importlib.metadata.version(pkg)
        except importlib.metadata.PackageNotFoundError:
            versions[pkg] = "unknown"
    return versions
