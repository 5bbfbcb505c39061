"""Shared fixtures for Value Matrix tests."""

import json
import sys
from pathlib import Path

import pytest
import yaml

# Ensure project root is importable
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from schemas import RunConfig  # noqa: E402

FIXTURES = Path(__file__).resolve().parent / "fixtures"


@pytest.fixture
def cfg():
    """The production config.yaml, validated."""
    with open(ROOT / "config.yaml") as f:
        return RunConfig(**yaml.safe_load(f))


@pytest.fixture
def mock_raw_records():
    """17 raw records: 9 plottable, 4 outliers, 2 unsectored, 2 malformed."""
    with open(FIXTURES / "mock_stock_records.json") as f:
        return json.load(f)


@pytest.fixture
def three_record_raw():
    """Three-record scenario: one plottable, one outlier, one unsectored."""
    return [
        {"ticker": "A", "name": "Alpha", "sector": "Tech", "pbr": 10, "roe": 0.2, "marketCap": 1e9},
        {"ticker": "B", "name": "Beta", "sector": "Tech", "pbr": -1, "roe": 0.1, "marketCap": 2e9},
        {"ticker": "C", "name": "Gamma", "pbr": 5, "roe": 0.05, "marketCap": 1e8},
    ]


def make_record(ticker, pbr, roe, sector="Tech", name=None, market_cap=1e9):
    return {"ticker": ticker, "name": name or f"Co {ticker}", "sector": sector,
            "pbr": pbr, "roe": roe, "marketCap": market_cap}
