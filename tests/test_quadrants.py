"""Tests for quadrant membership and labelling."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
from matrix_engine import assign_quadrants, in_quadrant, quadrant_mask, records_to_frame
from schemas import Medians, Quadrant
from conftest import make_record

M = Medians(avg_pbr=2, avg_roe=0.1)
NON_ALL = [Quadrant.TOP_RIGHT, Quadrant.TOP_LEFT,
           Quadrant.BOTTOM_LEFT, Quadrant.BOTTOM_RIGHT]


class TestInQuadrant:
    def test_tie_on_both_axes_is_top_right(self):
        assert in_quadrant(2, 0.1, Quadrant.TOP_RIGHT, M) is True
        assert in_quadrant(2, 0.1, Quadrant.TOP_LEFT, M) is False
        assert in_quadrant(2, 0.1, Quadrant.BOTTOM_RIGHT, M) is False

    @pytest.mark.parametrize("pbr,roe,expected", [
        (3.0, 0.2, Quadrant.TOP_RIGHT),
        (1.0, 0.2, Quadrant.TOP_LEFT),
        (1.0, 0.0, Quadrant.BOTTOM_LEFT),
        (3.0, 0.0, Quadrant.BOTTOM_RIGHT),
        (2.0, 0.0, Quadrant.BOTTOM_RIGHT),   # PBR tie goes right
        (1.0, 0.1, Quadrant.TOP_LEFT),       # ROE tie goes top
    ])
    def test_exactly_one_quadrant(self, pbr, roe, expected):
        hits = [q for q in NON_ALL if in_quadrant(pbr, roe, q, M)]
        assert hits == [expected]

    def test_all_always_true(self):
        for pbr, roe in [(0.1, -0.4), (24, 0.9), (2, 0.1)]:
            assert in_quadrant(pbr, roe, Quadrant.ALL, M)

    def test_accepts_string_selector(self):
        assert in_quadrant(3, 0.2, "TOP_RIGHT", M)


class TestQuadrantMask:
    def _df(self):
        return records_to_frame([
            make_record("TR", 3, 0.2), make_record("TL", 1, 0.2),
            make_record("BL", 1, 0.0), make_record("BR", 3, 0.0),
            make_record("TIE", 2, 0.1),
        ])

    def test_masks_partition_frame(self):
        df = self._df()
        total = sum(quadrant_mask(df, q, M).astype(int) for q in NON_ALL)
        assert (total == 1).all()

    def test_mask_matches_scalar(self):
        df = self._df()
        for q in list(Quadrant):
            mask = quadrant_mask(df, q, M)
            expected = [in_quadrant(p, r, q, M) for p, r in zip(df["pbr"], df["roe"])]
            assert mask.tolist() == expected

    def test_all_mask_on_empty(self):
        assert quadrant_mask(records_to_frame([]), Quadrant.ALL, M).empty


class TestAssignQuadrants:
    def test_labels(self):
        df = records_to_frame([
            make_record("TR", 3, 0.2), make_record("TL", 1, 0.2),
            make_record("BL", 1, 0.0), make_record("BR", 3, 0.0),
            make_record("TIE", 2, 0.1),
        ])
        out = assign_quadrants(df, M)
        assert dict(zip(out["ticker"], out["quadrant"])) == {
            "TR": "TOP_RIGHT", "TL": "TOP_LEFT", "BL": "BOTTOM_LEFT",
            "BR": "BOTTOM_RIGHT", "TIE": "TOP_RIGHT",
        }
        assert "quadrant" not in df.columns

    def test_empty(self):
        out = assign_quadrants(records_to_frame([]), M)
        assert out.empty
        assert "quadrant" in out.columns
