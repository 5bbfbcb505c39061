#!/usr/bin/env python3
"""
Value Matrix (PBR vs ROE) - Classification Engine
==================================================
Turns a raw list of equity records into the sets a PBR/ROE scatter chart
needs: plottable records, outliers (with the reason each was excluded),
median PBR/ROE, quadrant labels and a per-record fill opacity driven by
the quadrant, sector and search controls.

Every classification step here is a pure function of its arguments.
State and recomputation order live in matrix_pipeline.MatrixPipeline.

Network behaviour
-----------------
* One GET of the record list per load (fetch_records). No automatic retry.
* Any transport failure, non-2xx status or non-array body is logged and
  normalised to an empty list, so the pipeline sees "no data".
"""

import json
import logging
import time
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import numpy as np
import pandas as pd
import requests
import yaml
from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from pydantic import ValidationError

from instrumentation import trace_net_call
from schemas import (
    RECORD_COLS,
    FilterCriteria,
    Medians,
    Quadrant,
    RunConfig,
    StockRecord,
    Thresholds,
)

log = logging.getLogger("matrix.engine")

# =========================================================================
# A. Load configuration
# =========================================================================
ROOT = Path(__file__).resolve().parent
CONFIG_PATH = ROOT / "config.yaml"

DEFAULT_MEDIANS = Medians(avg_pbr=1.0, avg_roe=0.15)

OPACITY_SUPPRESSED = 0.05
OPACITY_DEFAULT = 0.7
OPACITY_HIGHLIGHT = 1.0


def load_config(path: Path = CONFIG_PATH) -> RunConfig:
    """Load and validate the YAML configuration file."""
    with open(path, "r") as f:
        raw = yaml.safe_load(f)
    return RunConfig(**(raw or {}))


# =========================================================================
# B. Record source
# =========================================================================
def fetch_records(source: RunConfig.SourceConfig, event_log=None) -> list:
    """GET the raw record list from the configured endpoint.

    Returns the decoded JSON array, or [] on any failure. Never raises
    for transport or decoding problems.
    """
    url = source.url
    host = urlparse(url).hostname or ""
    t0 = time.monotonic()
    status_code = 0
    nbytes = 0
    status = "OK"
    data = []
    try:
        resp = requests.get(url, timeout=source.timeout_seconds)
        status_code = resp.status_code
        nbytes = len(resp.content)
        # raise_for_status() lets unfollowed 3xx through
        if not 200 <= resp.status_code < 300:
            raise requests.HTTPError(f"status {resp.status_code}", response=resp)
        data = resp.json()
    except requests.RequestException as e:
        status = "FAIL"
        log.warning(f"Record fetch failed ({type(e).__name__}, status={status_code})")
        data = []
    except ValueError as e:
        status = "FAIL"
        log.warning(f"Record fetch returned invalid JSON ({type(e).__name__})")
        data = []
    finally:
        if event_log is not None:
            trace_net_call(event_log, "Fetch record list", hostname=host,
                           status_code=status_code, nbytes=nbytes,
                           duration_ms=(time.monotonic() - t0) * 1000,
                           status=status)

    if not isinstance(data, list):
        log.warning(f"Record fetch returned {type(data).__name__}, expected a JSON array")
        return []
    log.info(f"Fetched {len(data)} raw records", extra={"count": len(data)})
    return data


def load_records_file(path: str | Path) -> list:
    """Read a raw record list from a local JSON file (offline source).

    Unreadable or non-array files yield [] the same way a failed fetch does.
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        log.warning(f"Could not read records from {path.name} ({type(e).__name__})")
        return []
    if not isinstance(data, list):
        log.warning(f"{path.name} does not contain a JSON array")
        return []
    return data


def validate_records(raw: list) -> tuple[list[StockRecord], list[dict]]:
    """Validate raw objects against StockRecord.

    Returns (records, rejected). Rejected entries carry the ticker (when
    one was readable) and the validation error. A repeated ticker keeps
    its first occurrence; later ones are rejected.
    """
    records: list[StockRecord] = []
    rejected: list[dict] = []
    seen: set[str] = set()
    for item in raw:
        ticker = item.get("ticker") if isinstance(item, dict) else None
        try:
            if not isinstance(item, dict):
                raise ValueError(f"expected an object, got {type(item).__name__}")
            rec = StockRecord(**item)
        except (ValidationError, ValueError, TypeError) as e:
            errors = e.errors() if isinstance(e, ValidationError) else [{"msg": str(e)}]
            fields = sorted({str(err.get("loc", ("record",))[0]) for err in errors})
            rejected.append({"ticker": ticker, "error": "invalid " + ", ".join(fields)})
            log.warning(f"Rejected malformed record {ticker!r}: invalid {', '.join(fields)}")
            continue
        if rec.ticker in seen:
            rejected.append({"ticker": rec.ticker, "error": "duplicate ticker"})
            log.warning(f"Rejected duplicate ticker {rec.ticker!r}")
            continue
        seen.add(rec.ticker)
        records.append(rec)
    return records, rejected


def records_to_frame(records: list) -> pd.DataFrame:
    """Build the record DataFrame (RECORD_COLS, float numerics) from models or dicts."""
    rows = [r.model_dump() if isinstance(r, StockRecord) else r for r in records]
    df = pd.DataFrame(rows, columns=RECORD_COLS)
    return df.astype({"pbr": float, "roe": float, "marketCap": float})


# =========================================================================
# C. Outlier segregation
# =========================================================================
def outlier_reason(pbr: float, roe: float, thresholds: Thresholds) -> Optional[str]:
    """First matching outlier rule for one record, or None if plottable.

    Rules are checked in a fixed order; only the first match is reported.
    """
    if pbr <= thresholds.pbr_floor:
        return "PBR is zero or negative"
    if pbr >= thresholds.pbr_threshold:
        return f"PBR too high ({pbr:.2f})"
    if roe >= thresholds.roe_upper_threshold:
        return f"ROE too high ({roe * 100:.1f}%)"
    if roe <= thresholds.roe_lower_threshold:
        return f"ROE too low ({roe * 100:.1f}%)"
    return None


def segregate_outliers(df: pd.DataFrame, thresholds: Thresholds = Thresholds()):
    """Split records into (plottable, outliers).

    Records without a sector are dropped first; they appear in neither
    set. Outliers gain a ``reason`` column. Input order is preserved and
    the input frame is not modified.
    """
    has_sector = df["sector"].notna() & (df["sector"].astype(str) != "")
    n_unsectored = int((~has_sector).sum())
    if n_unsectored:
        log.info(f"Dropped {n_unsectored} records without a sector",
                 extra={"step": "segregate", "count": n_unsectored})
    sectored = df[has_sector]

    reasons = [outlier_reason(p, r, thresholds)
               for p, r in zip(sectored["pbr"], sectored["roe"])]
    is_outlier = pd.Series([r is not None for r in reasons],
                           index=sectored.index, dtype=bool)

    plottable = sectored[~is_outlier].reset_index(drop=True)
    outliers = sectored[is_outlier].copy()
    outliers["reason"] = [r for r in reasons if r is not None]
    outliers = outliers.reset_index(drop=True)
    return plottable, outliers


# =========================================================================
# D. Medians
# =========================================================================
def _median_of(df: pd.DataFrame, col: str) -> float:
    vals = df.sort_values(col, kind="mergesort")[col].to_numpy()
    n = len(vals)
    if n % 2 == 0:
        return float((vals[n // 2 - 1] + vals[n // 2]) / 2)
    return float(vals[n // 2])


def compute_medians(plottable: pd.DataFrame,
                    fallback: Medians = DEFAULT_MEDIANS) -> Medians:
    """Median PBR and ROE of the plottable set.

    Each axis is sorted on its own copy. An empty set returns ``fallback``
    so quadrant boundaries stay defined.
    """
    if plottable.empty:
        return fallback
    return Medians(avg_pbr=_median_of(plottable, "pbr"),
                   avg_roe=_median_of(plottable, "roe"))


def sector_options(plottable: pd.DataFrame) -> list[str]:
    """'ALL' followed by the distinct plottable sectors in sorted order."""
    return ["ALL"] + sorted(plottable["sector"].dropna().unique().tolist())


# =========================================================================
# E. Quadrants
# =========================================================================
def in_quadrant(pbr: float, roe: float, quadrant: Quadrant, medians: Medians) -> bool:
    """Quadrant membership for one record. Ties go right (PBR) and top (ROE)."""
    quadrant = Quadrant(quadrant)
    if quadrant is Quadrant.ALL:
        return True
    right = pbr >= medians.avg_pbr
    top = roe >= medians.avg_roe
    if quadrant is Quadrant.TOP_RIGHT:
        return bool(right and top)
    if quadrant is Quadrant.TOP_LEFT:
        return bool((not right) and top)
    if quadrant is Quadrant.BOTTOM_LEFT:
        return bool((not right) and (not top))
    return bool(right and (not top))


def quadrant_mask(df: pd.DataFrame, quadrant: Quadrant, medians: Medians) -> pd.Series:
    """Vectorised in_quadrant over a record frame."""
    quadrant = Quadrant(quadrant)
    if quadrant is Quadrant.ALL:
        return pd.Series(True, index=df.index, dtype=bool)
    right = df["pbr"] >= medians.avg_pbr
    top = df["roe"] >= medians.avg_roe
    masks = {
        Quadrant.TOP_RIGHT: right & top,
        Quadrant.TOP_LEFT: ~right & top,
        Quadrant.BOTTOM_LEFT: ~right & ~top,
        Quadrant.BOTTOM_RIGHT: right & ~top,
    }
    return masks[quadrant].astype(bool)


def assign_quadrants(df: pd.DataFrame, medians: Medians) -> pd.DataFrame:
    """Return a copy of ``df`` with the record's (single) quadrant label."""
    out = df.copy()
    right = (out["pbr"] >= medians.avg_pbr).to_numpy(dtype=bool)
    top = (out["roe"] >= medians.avg_roe).to_numpy(dtype=bool)
    labels = np.where(
        top,
        np.where(right, Quadrant.TOP_RIGHT.value, Quadrant.TOP_LEFT.value),
        np.where(right, Quadrant.BOTTOM_RIGHT.value, Quadrant.BOTTOM_LEFT.value),
    )
    out["quadrant"] = pd.Series(labels, index=out.index, dtype=object)
    return out


# =========================================================================
# F. Visibility (fill opacity)
# =========================================================================
def _matches_search(ticker: str, name: str, term: str) -> bool:
    term = term.lower()
    return term in str(ticker).lower() or term in str(name).lower()


def fill_opacity(record: dict, medians: Medians, criteria: FilterCriteria) -> float:
    """Fill opacity for one plottable record.

    0.7 by default, 0.05 when the quadrant or sector filter excludes it.
    A non-empty search overrides both: 1.0 on a ticker/name match,
    0.05 otherwise.
    """
    opacity = OPACITY_DEFAULT
    sector_ok = criteria.sector == "ALL" or record.get("sector") == criteria.sector
    if not in_quadrant(record["pbr"], record["roe"], criteria.quadrant, medians) or not sector_ok:
        opacity = OPACITY_SUPPRESSED
    if criteria.search:
        if _matches_search(record["ticker"], record.get("name", ""), criteria.search):
            opacity = OPACITY_HIGHLIGHT
        else:
            opacity = OPACITY_SUPPRESSED
    return opacity


def search_mask(df: pd.DataFrame, term: str) -> pd.Series:
    """Case-insensitive literal substring match on ticker OR name."""
    term = term.lower()
    ticker_hit = df["ticker"].astype(str).str.lower().str.contains(term, regex=False)
    name_hit = df["name"].astype(str).str.lower().str.contains(term, regex=False)
    return (ticker_hit | name_hit).astype(bool)


def apply_visibility(plottable: pd.DataFrame, medians: Medians,
                     criteria: FilterCriteria) -> pd.DataFrame:
    """Display records: plottable + ``quadrant`` + ``fillOpacity``.

    Recomputed in full for every call; same rules as fill_opacity.
    """
    visible = quadrant_mask(plottable, criteria.quadrant, medians)
    if criteria.sector != "ALL":
        visible = visible & (plottable["sector"] == criteria.sector)
    opacity = np.where(visible.to_numpy(dtype=bool), OPACITY_DEFAULT, OPACITY_SUPPRESSED)

    if criteria.search:
        hit = search_mask(plottable, criteria.search).to_numpy(dtype=bool)
        opacity = np.where(hit, OPACITY_HIGHLIGHT, OPACITY_SUPPRESSED)

    out = assign_quadrants(plottable, medians)
    out["fillOpacity"] = pd.Series(opacity, index=out.index, dtype=float)
    return out


# =========================================================================
# G. Write to Excel
# =========================================================================
_HEADER_FILL = PatternFill("solid", fgColor="1F4E79")
_HEADER_FONT = Font(bold=True, color="FFFFFF")


def _write_sheet(ws, df: pd.DataFrame, col_map: list[tuple[str, str]]):
    ws.append([h for _, h in col_map])
    for cell in ws[1]:
        cell.fill = _HEADER_FILL
        cell.font = _HEADER_FONT
        cell.alignment = Alignment(horizontal="center")

    for _, row in df.iterrows():
        vals = []
        for src, _ in col_map:
            v = row.get(src)
            if v is None or (isinstance(v, float) and np.isnan(v)):
                vals.append(None)
            elif src in ("pbr", "fillOpacity"):
                vals.append(round(float(v), 2))
            elif src == "roe":
                vals.append(round(float(v), 4))
            else:
                vals.append(v)
        ws.append(vals)
    ws.freeze_panes = "A2"


def write_excel(display: pd.DataFrame, outliers: pd.DataFrame, out_path: str | Path) -> str:
    """Write the Matrix (display records) and Outliers sheets."""
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)

    wb = Workbook()
    ws = wb.active
    ws.title = "Matrix"
    _write_sheet(ws, display, [
        ("ticker", "Ticker"), ("name", "Company"), ("sector", "Sector"),
        ("pbr", "PBR"), ("roe", "ROE"), ("marketCap", "Market_Cap"),
        ("quadrant", "Quadrant"), ("fillOpacity", "Opacity"),
    ])

    ws_out = wb.create_sheet("Outliers")
    _write_sheet(ws_out, outliers, [
        ("ticker", "Ticker"), ("name", "Company"), ("sector", "Sector"),
        ("pbr", "PBR"), ("roe", "ROE"), ("marketCap", "Market_Cap"),
        ("reason", "Reason"),
    ])

    wb.save(str(out_path))
    return str(out_path)
