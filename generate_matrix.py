#!/usr/bin/env python3
"""
Render payload for the Value Matrix scatter chart.
==================================================
Converts pipeline state into one JSON document a chart front end can
draw without any further logic: display records (with quadrant, fill
opacity and tooltip lines), outliers with reasons, medians for the
quadrant guide lines, the sector list for the selector, and axis domains.

Usage:
    python generate_matrix.py --records-file stocks.json
    python generate_matrix.py --records-file stocks.json --output out/matrix.json
"""

import argparse
import json
import math
from pathlib import Path

import numpy as np
import pandas as pd

from matrix_engine import ROOT, load_config, load_records_file
from matrix_pipeline import MatrixPipeline

# Marker area range that market cap is scaled onto
BUBBLE_RANGE = [100, 1000]

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _safe(v):
    """Convert numpy/pandas types to JSON-safe Python types."""
    if v is None or (isinstance(v, float) and math.isnan(v)):
        return None
    if isinstance(v, (np.integer,)):
        return int(v)
    if isinstance(v, (np.floating,)):
        return float(v)
    if isinstance(v, np.bool_):
        return bool(v)
    return v


def tooltip_lines(row) -> list[str]:
    """Hover text for one bubble: name/ticker, PBR, ROE %, market cap in billions."""
    return [
        f"{row['name']} ({row['ticker']})",
        f"PBR: {row['pbr']:.2f}",
        f"ROE: {row['roe'] * 100:.2f}%",
        f"Market cap: {row['marketCap'] / 1e9:.2f}B",
    ]


def _domain(s: pd.Series):
    if s.empty:
        return None
    return [_safe(s.min()), _safe(s.max())]


# ---------------------------------------------------------------------------
# Payload
# ---------------------------------------------------------------------------

def prepare_matrix_data(pipeline: MatrixPipeline) -> dict:
    display = pipeline.display_records
    outliers = pipeline.outliers

    record_cols = ["ticker", "name", "sector", "pbr", "roe", "marketCap",
                   "quadrant", "fillOpacity"]
    records = []
    for _, row in display.iterrows():
        rec = {c: _safe(row.get(c)) for c in record_cols}
        rec["tooltip"] = tooltip_lines(row)
        records.append(rec)

    outlier_cols = ["ticker", "name", "sector", "pbr", "roe", "marketCap", "reason"]
    outlier_rows = [{c: _safe(row.get(c)) for c in outlier_cols}
                    for _, row in outliers.iterrows()]

    return {
        "records": records,
        "outliers": outlier_rows,
        "medians": pipeline.medians.model_dump(),
        "sectors": pipeline.sectors,
        "criteria": pipeline.criteria.model_dump(mode="json"),
        "axes": {
            "x": {"key": "pbr", "label": "PBR", "domain": _domain(display["pbr"])},
            "y": {"key": "roe", "label": "ROE", "unit": "%",
                  "domain": _domain(display["roe"])},
        },
        "bubble_range": BUBBLE_RANGE,
        "counts": {
            "plottable": len(display),
            "outliers": len(outliers),
            "highlighted": int((display["fillOpacity"] == 1.0).sum()),
            "rejected": len(pipeline.rejected),
        },
    }


def write_matrix_json(pipeline: MatrixPipeline, output_path: Path) -> Path:
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    payload = prepare_matrix_data(pipeline)
    output_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False),
                           encoding="utf-8")
    print(f"Matrix payload written: {output_path} "
          f"({output_path.stat().st_size / 1024:.0f} KB)")
    return output_path


def main(argv=None):
    parser = argparse.ArgumentParser(description="Generate the Value Matrix JSON payload")
    parser.add_argument("--records-file", type=str, required=True,
                        help="JSON array of stock records")
    parser.add_argument("--output", type=str, default=None,
                        help="Output path (default: <output_dir>/<json_file> from config)")
    args = parser.parse_args(argv)

    cfg = load_config()
    pipeline = MatrixPipeline(cfg, fetcher=lambda: load_records_file(args.records_file))
    pipeline.load()

    output = Path(args.output) if args.output else ROOT / cfg.output.output_dir / cfg.output.json_file
    write_matrix_json(pipeline, output)


if __name__ == "__main__":
    main()
