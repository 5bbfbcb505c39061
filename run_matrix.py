#!/usr/bin/env python3
"""
Value Matrix (PBR vs ROE) - Master Entry Point
===============================================
Single-command run:
    python run_matrix.py                                  # fetch from config source
    python run_matrix.py --records-file stocks.json       # offline
    python run_matrix.py --search toyota --quadrant TOP_LEFT
    python run_matrix.py --sector Technology --no-excel

Writes the chart payload (JSON), an Excel workbook, and a run directory
(runs/<run_id>/) with the JSON log, config snapshot, record sets and
event trace.
"""

import argparse
import sys
import time
from functools import partial
from pathlib import Path

from pydantic import ValidationError

from generate_matrix import write_matrix_json
from instrumentation import trace_io
from matrix_engine import CONFIG_PATH, load_config, load_records_file, write_excel
from matrix_pipeline import MatrixPipeline
from run_context import RunContext
from schemas import Quadrant

ROOT = Path(__file__).resolve().parent


# ---------------------------------------------------------------------------
# CLI argument parsing
# ---------------------------------------------------------------------------
def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Value Matrix (PBR vs ROE)")
    p.add_argument("--config", type=str, default=str(CONFIG_PATH),
                   help="Path to config.yaml")
    p.add_argument("--records-file", type=str, default="",
                   help="Read records from a local JSON array instead of the source URL")
    p.add_argument("--base-url", type=str, default="",
                   help="Override source.base_url from config")
    p.add_argument("--search", type=str, default="",
                   help="Highlight records whose ticker or name contains this text")
    p.add_argument("--sector", type=str, default="ALL",
                   help="Only show this sector at full opacity (default: ALL)")
    p.add_argument("--quadrant", type=str, default="ALL",
                   choices=[q.value for q in Quadrant],
                   help="Only show this quadrant at full opacity (default: ALL)")
    p.add_argument("--no-excel", action="store_true",
                   help="Skip the Excel workbook")
    return p.parse_args(argv)


# ---------------------------------------------------------------------------
# Config loader with error handling
# ---------------------------------------------------------------------------
def load_config_safe(path: str):
    """Load config.yaml with a clear error on failure."""
    config_path = Path(path)
    if not config_path.exists():
        print(f"\n  ERROR: config.yaml not found at {config_path}")
        sys.exit(1)
    try:
        return load_config(config_path)
    except (ValidationError, ValueError) as e:
        print(f"\n  ERROR: Invalid config.yaml: {e}")
        sys.exit(1)


def print_summary(pipeline: MatrixPipeline, out_files: list, t0: float):
    m = pipeline.medians
    display = pipeline.display_records
    print("\n" + "=" * 60)
    print("  VALUE MATRIX SUMMARY")
    print("=" * 60)
    print(f"  Plottable:    {len(pipeline.plottable)}")
    print(f"  Outliers:     {len(pipeline.outliers)}")
    print(f"  Rejected:     {len(pipeline.rejected)}")
    print(f"  Median PBR:   {m.avg_pbr:.2f}")
    print(f"  Median ROE:   {m.avg_roe * 100:.2f}%")
    if not display.empty:
        counts = display["quadrant"].value_counts()
        for q in [Quadrant.TOP_LEFT, Quadrant.TOP_RIGHT,
                  Quadrant.BOTTOM_LEFT, Quadrant.BOTTOM_RIGHT]:
            print(f"  {q.value:<13} {int(counts.get(q.value, 0))}")
        visible = int((display["fillOpacity"] > 0.05).sum())
        print(f"  Visible:      {visible} / {len(display)}")
    for f in out_files:
        print(f"  Wrote:        {f}")
    print(f"  Elapsed:      {time.time() - t0:.1f}s")
    print("=" * 60)


def main(argv=None) -> int:
    t0 = time.time()
    args = parse_args(argv)
    cfg = load_config_safe(args.config)
    if args.base_url:
        cfg = cfg.model_copy(update={
            "source": cfg.source.model_copy(update={"base_url": args.base_url})})

    ctx = RunContext()
    try:
        ctx.save_config(cfg)

        fetcher = None
        if args.records_file:
            fetcher = partial(load_records_file, args.records_file)
            print(f"Loading records from {args.records_file}...")
        else:
            print(f"Fetching records from {cfg.source.url}...")

        pipeline = MatrixPipeline(cfg, fetcher=fetcher)
        pipeline.set_search(args.search)
        pipeline.set_sector(args.sector)
        pipeline.set_quadrant(args.quadrant)
        pipeline.load()

        if pipeline.plottable.empty and pipeline.outliers.empty:
            print("  No records available; writing an empty matrix.")

        ctx.save_artifact("plottable", pipeline.plottable)
        ctx.save_artifact("outliers", pipeline.outliers)

        out_dir = ROOT / cfg.output.output_dir
        out_files = []
        t_write = time.monotonic()
        json_path = write_matrix_json(pipeline, out_dir / cfg.output.json_file)
        trace_io(pipeline.events, "Write matrix JSON", str(json_path),
                 duration_ms=(time.monotonic() - t_write) * 1000)
        out_files.append(str(json_path))

        if not args.no_excel:
            t_write = time.monotonic()
            xlsx = write_excel(pipeline.display_records, pipeline.outliers,
                               out_dir / cfg.output.excel_file)
            trace_io(pipeline.events, "Write Excel workbook", xlsx,
                     duration_ms=(time.monotonic() - t_write) * 1000)
            out_files.append(xlsx)

        pipeline.events.flush_all(ctx.run_dir)
        ctx.save_metadata({
            "plottable": len(pipeline.plottable),
            "outliers": len(pipeline.outliers),
            "rejected": len(pipeline.rejected),
            "medians": pipeline.medians.model_dump(),
            "criteria": pipeline.criteria.model_dump(mode="json"),
        })
        print_summary(pipeline, out_files, t0)
    finally:
        ctx.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
