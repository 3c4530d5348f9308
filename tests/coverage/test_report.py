import io
import json
import os

import pytest

from crosscov.internal.coverage import report
from crosscov.internal.coverage.data import CoverageMap
from crosscov.internal.coverage.report import CoverageSummary
from crosscov.internal.coverage.report import Totals
from crosscov.internal.coverage.report import check_coverage
from crosscov.internal.coverage.report import collapse_ranges
from crosscov.internal.coverage.report import missed_lines
from crosscov.internal.coverage.report import print_coverage_report
from crosscov.internal.coverage.report import summarize
from crosscov.internal.coverage.report import write_json_report
from tests.coverage import file_coverage


@pytest.fixture
def coverage_map():
    coverage_map = CoverageMap()
    coverage_map.add_file_coverage(file_coverage("/project/app.py", s=[1, 0, 0, 1, 0], f=[1, 0], b=[[1, 0]]))
    coverage_map.add_file_coverage(file_coverage("/project/pkg/mod.py", s=[2, 2]))
    return coverage_map


def test_totals():
    assert Totals().pct == 100.0
    assert Totals(3, 1).pct == 33.33
    assert Totals(3, 1).missed == 2
    assert Totals(3, 1) + Totals(1, 1) == Totals(4, 2)
    assert Totals(4, 2).to_dict() == {"total": 4, "covered": 2, "skipped": 0, "pct": 50.0}


def test_summarize(coverage_map):
    summary = summarize(coverage_map)

    assert summary.statements == Totals(7, 4)
    assert summary.lines == Totals(7, 4)
    assert summary.functions == Totals(2, 1)
    assert summary.branches == Totals(2, 1)
    assert summary["lines"] is summary.lines
    with pytest.raises(KeyError):
        summary["files"]


def test_summary_to_dict(coverage_map):
    data = summarize(coverage_map).to_dict()

    assert set(data) == {"lines", "statements", "functions", "branches"}
    assert data["functions"]["pct"] == 50.0


def test_missed_lines(coverage_map):
    assert missed_lines(coverage_map.file_coverage_for("/project/app.py")) == [2, 3, 5]
    assert collapse_ranges([2, 3, 5]) == [(2, 3), (5, 5)]
    assert collapse_ranges([]) == []


def test_print_coverage_report(coverage_map, monkeypatch):
    monkeypatch.setattr(report, "w", 80)
    out = io.StringIO()

    print_coverage_report(coverage_map, "/project", file=out)

    lines = out.getvalue().splitlines()
    assert "CROSSCOV COVERAGE REPORT" in lines[0]
    assert lines[1].split() == ["FILE", "%", "STMTS", "%", "BRANCH", "%", "FUNCS", "%", "LINES", "UNCOVERED", "LINES"]
    assert lines[3].split() == ["app.py", "40", "50", "50", "40", "2-3,5"]
    assert lines[4].split() == [os.path.join("pkg", "mod.py"), "100", "100", "100", "100"]
    assert lines[6].split() == ["TOTAL", "57.14", "50", "50", "57.14"]


def test_print_coverage_report_summary(coverage_map):
    out = io.StringIO()

    print_coverage_report(coverage_map, file=out, summary_only=True)

    text = out.getvalue()
    assert "Statements  : 57.14% ( 4/7 )" in text
    assert "Branches    : 50% ( 1/2 )" in text
    assert "Functions   : 50% ( 1/2 )" in text
    assert "Lines       : 57.14% ( 4/7 )" in text


def test_print_empty_report():
    out = io.StringIO()

    print_coverage_report(CoverageMap(), file=out)

    assert "TOTAL" in out.getvalue()


def test_write_json_report(coverage_map, tmp_path):
    path = write_json_report(coverage_map, str(tmp_path / "coverage"))

    assert path == str(tmp_path / "coverage" / "coverage-final.json")
    with open(path) as f:
        assert CoverageMap.from_dict(json.load(f)) == coverage_map


def test_check_coverage():
    summary = CoverageSummary(lines=Totals(1000, 901), statements=Totals(10, 10))

    assert check_coverage(summary, {"lines": 90, "statements": 100}) == []
    assert check_coverage(summary, {"lines": 95, "statements": 100}) == [
        "ERROR: Coverage for lines (90.1%) does not meet global threshold (95%)"
    ]
