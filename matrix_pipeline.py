#!/usr/bin/env python3
"""
Value Matrix pipeline orchestrator.

Owns every derived set and recomputes it eagerly when an input changes:

  Stage A  (raw records)            -> plottable, outliers, medians, sectors
  Stage B  (Stage A + FilterCriteria) -> display records (quadrant + fillOpacity)

A raw-record change reruns A then B; a criteria change reruns B only.
While a fetch is outstanding (``loading``) nothing is recomputed; criteria
written in that window are applied when the fetch completes.

Each load gets a generation token. Only the newest generation's result is
applied, so a slow earlier fetch can never overwrite a later one.
"""

import logging
import threading
from concurrent.futures import Executor, Future
from dataclasses import dataclass, field
from typing import Callable, Optional

import pandas as pd

from instrumentation import EventLog, trace_event
from matrix_engine import (
    apply_visibility,
    compute_medians,
    fetch_records,
    records_to_frame,
    sector_options,
    segregate_outliers,
    validate_records,
)
from schemas import FilterCriteria, Medians, Quadrant, RunConfig

log = logging.getLogger("matrix.pipeline")


@dataclass(frozen=True)
class StageA:
    plottable: pd.DataFrame
    outliers: pd.DataFrame
    medians: Medians
    sectors: list[str] = field(default_factory=lambda: ["ALL"])


class MatrixPipeline:
    """Derived-state owner for one session.

    ``fetcher`` is a zero-argument callable returning the raw record list;
    by default it GETs ``cfg.source``. Anything it raises, or a non-list
    it returns, is logged and treated as an empty list.
    """

    def __init__(self, cfg: Optional[RunConfig] = None,
                 fetcher: Optional[Callable[[], list]] = None,
                 event_log: Optional[EventLog] = None):
        self.cfg = cfg or RunConfig()
        self.events = event_log or EventLog()
        self._fetcher = fetcher or (lambda: fetch_records(self.cfg.source, self.events))
        self._lock = threading.RLock()
        self._generation = 0
        self._loading = False

        self._records: list = []
        self._rejected: list[dict] = []
        self._criteria = FilterCriteria()
        self._stage_a = self._run_stage_a([])
        self._display = self._run_stage_b()

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------
    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def records(self) -> list:
        return list(self._records)

    @property
    def criteria(self) -> FilterCriteria:
        return self._criteria

    @property
    def plottable(self) -> pd.DataFrame:
        return self._stage_a.plottable

    @property
    def outliers(self) -> pd.DataFrame:
        return self._stage_a.outliers

    @property
    def medians(self) -> Medians:
        return self._stage_a.medians

    @property
    def sectors(self) -> list[str]:
        return list(self._stage_a.sectors)

    @property
    def display_records(self) -> pd.DataFrame:
        return self._display

    @property
    def rejected(self) -> list[dict]:
        return list(self._rejected)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------
    def _run_stage_a(self, records: list) -> StageA:
        with trace_event(self.events, "CALC", "Stage A: segregate + medians",
                         details=f"records={len(records)}"):
            df = records_to_frame(records)
            plottable, outliers = segregate_outliers(df, self.cfg.thresholds)
            medians = compute_medians(plottable, self.cfg.fallback_medians)
            sectors = sector_options(plottable)
        log.info(f"Stage A: {len(plottable)} plottable, {len(outliers)} outliers, "
                 f"median PBR={medians.avg_pbr:.2f} ROE={medians.avg_roe:.2%}",
                 extra={"phase": "stage_a", "count": len(plottable)})
        return StageA(plottable, outliers, medians, sectors)

    def _run_stage_b(self) -> pd.DataFrame:
        a = self._stage_a
        with trace_event(self.events, "CALC", "Stage B: quadrants + visibility",
                         details=f"criteria={self._criteria.model_dump(mode='json')}"):
            display = apply_visibility(a.plottable, a.medians, self._criteria)
        log.debug(f"Stage B: {len(display)} display records",
                  extra={"phase": "stage_b", "count": len(display)})
        return display

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------
    def set_records(self, raw: list):
        """Replace the raw record list (validates, then reruns A and B).

        Supersedes any load still in flight; its result will be discarded.
        """
        with self._lock:
            self._generation += 1
            self._loading = False
            self._apply_records(raw)

    def _apply_records(self, raw: list):
        records, rejected = validate_records(raw)
        with self._lock:
            self._records = records
            self._rejected = rejected
            self._stage_a = self._run_stage_a(records)
            self._display = self._run_stage_b()

    def set_criteria(self, criteria: FilterCriteria):
        with self._lock:
            if criteria == self._criteria:
                return
            self._criteria = criteria
            if not self._loading:
                self._display = self._run_stage_b()

    def set_search(self, term: str):
        self.set_criteria(self._criteria.model_copy(update={"search": term or ""}))

    def set_quadrant(self, quadrant: Quadrant | str):
        self.set_criteria(self._criteria.model_copy(update={"quadrant": Quadrant(quadrant)}))

    def set_sector(self, sector: str):
        self.set_criteria(self._criteria.model_copy(update={"sector": sector or "ALL"}))

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    def begin_load(self) -> int:
        """Enter the loading state and return this load's generation token."""
        with self._lock:
            self._generation += 1
            self._loading = True
            return self._generation

    def complete_load(self, token: int, raw: list) -> bool:
        """Apply a finished fetch. Returns False if a newer load superseded it."""
        with self._lock:
            if token != self._generation:
                log.info(f"Discarded superseded load (generation {token}, "
                         f"current {self._generation})",
                         extra={"generation": token})
                return False
            self._loading = False
            self._apply_records(raw)
            return True

    def load(self) -> bool:
        """Fetch once and apply the result. No retry on failure."""
        token = self.begin_load()
        return self.complete_load(token, self._fetch())

    def load_in_background(self, executor: Executor) -> Future:
        """Submit the fetch to ``executor``; the future resolves to complete_load's result."""
        token = self.begin_load()
        return executor.submit(lambda: self.complete_load(token, self._fetch()))

    def _fetch(self) -> list:
        # The boundary: whatever the source does, the pipeline sees a list
        try:
            raw = self._fetcher()
        except Exception as e:
            log.warning(f"Record source raised {type(e).__name__}; treating as no data")
            return []
        return raw if isinstance(raw, list) else []
