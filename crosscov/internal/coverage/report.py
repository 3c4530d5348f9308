from dataclasses import dataclass
from dataclasses import field
import json
import os
import sys
import typing as t

from crosscov.internal.coverage.data import CoverageMap
from crosscov.internal.coverage.data import FileCoverage
from crosscov.internal.logger import get_logger
from crosscov.internal.utils.fs import atomic_write


log = get_logger(__name__)


try:
    w, _ = os.get_terminal_size()
except OSError:
    w = 80

REPORT_FILENAME = "coverage-final.json"
METRICS = ("statements", "branches", "functions", "lines")


def collapse_ranges(numbers):
    # type: (t.List[int]) -> t.List[t.Tuple[int, int]]
    """Collapse sorted numbers into ``(start, end)`` ranges."""
    # This module is only used in reports, so it's fine to not be efficient.
    ranges = []  # type: t.List[t.Tuple[int, int]]
    for n in numbers:
        if ranges and ranges[-1][1] == n - 1:
            ranges[-1] = (ranges[-1][0], n)
        else:
            ranges.append((n, n))
    return ranges


@dataclass
class Totals:
    total: int = 0
    covered: int = 0

    @property
    def missed(self):
        # type: () -> int
        return self.total - self.covered

    @property
    def pct(self):
        # type: () -> float
        if not self.total:
            return 100.0
        return round(self.covered * 100.0 / self.total, 2)

    def __add__(self, other):
        # type: (Totals) -> Totals
        return Totals(self.total + other.total, self.covered + other.covered)

    def to_dict(self):
        # type: () -> t.Dict[str, t.Any]
        return {"total": self.total, "covered": self.covered, "skipped": 0, "pct": self.pct}


@dataclass
class CoverageSummary:
    lines: Totals = field(default_factory=Totals)
    statements: Totals = field(default_factory=Totals)
    functions: Totals = field(default_factory=Totals)
    branches: Totals = field(default_factory=Totals)

    def __getitem__(self, metric):
        # type: (str) -> Totals
        if metric not in METRICS:
            raise KeyError(metric)
        return getattr(self, metric)

    def merge(self, other):
        # type: (CoverageSummary) -> None
        for metric in METRICS:
            setattr(self, metric, self[metric] + other[metric])

    def to_dict(self):
        # type: () -> t.Dict[str, t.Dict[str, t.Any]]
        return {metric: self[metric].to_dict() for metric in METRICS}


def summarize_file(fc):
    # type: (FileCoverage) -> CoverageSummary
    lines = fc.line_hits()
    arms = [hits for branch in fc.b for hits in branch]
    return CoverageSummary(
        lines=Totals(len(lines), sum(1 for hits in lines.values() if hits)),
        statements=Totals(len(fc.s), sum(1 for hits in fc.s if hits)),
        functions=Totals(len(fc.f), sum(1 for hits in fc.f if hits)),
        branches=Totals(len(arms), sum(1 for hits in arms if hits)),
    )


def summarize(coverage_map):
    # type: (CoverageMap) -> CoverageSummary
    summary = CoverageSummary()
    for _, fc in coverage_map.items():
        summary.merge(summarize_file(fc))
    return summary


def missed_lines(fc):
    # type: (FileCoverage) -> t.List[int]
    return sorted(line for line, hits in fc.line_hits().items() if not hits)


def _pct(value):
    # type: (float) -> str
    return ("%.2f" % value).rstrip("0").rstrip(".")


def print_coverage_report(coverage_map, cwd=None, file=None, summary_only=False):
    # type: (CoverageMap, t.Optional[str], t.Optional[t.TextIO], bool) -> None
    out = file if file is not None else sys.stdout

    def p(line=""):
        print(line, file=out)

    summary = summarize(coverage_map)

    if summary_only:
        p(" Coverage summary ".center(w, "="))
        for metric in METRICS:
            totals = summary[metric]
            p(f"{metric.capitalize():<12}: {_pct(totals.pct)}% ( {totals.covered}/{totals.total} )")
        p("=" * w)
        return

    paths = {path: os.path.relpath(path, cwd) if cwd else path for path in coverage_map.files()}
    n = max([len(path) for path in paths.values()] + [len("TOTAL")]) + 4

    # Title
    p(" CROSSCOV COVERAGE REPORT ".center(w, "="))

    # Header
    p(f"{'FILE':<{n}}{'% STMTS':>9}{'% BRANCH':>10}{'% FUNCS':>9}{'% LINES':>9}  UNCOVERED LINES")
    p("-" * w)

    for path in coverage_map.files():
        fc = t.cast(FileCoverage, coverage_map.file_coverage_for(path))
        file_summary = summarize_file(fc)
        missed = ",".join(
            f"{start}-{end}" if start != end else str(start) for start, end in collapse_ranges(missed_lines(fc))
        )
        missed_str = f"  {missed}" if missed else ""
        p(
            f"{paths[path]:{n}s}"
            f"{_pct(file_summary.statements.pct):>9}"
            f"{_pct(file_summary.branches.pct):>10}"
            f"{_pct(file_summary.functions.pct):>9}"
            f"{_pct(file_summary.lines.pct):>9}"
            f"{missed_str}"
        )

    p("-" * w)
    p(
        f"{'TOTAL':<{n}}"
        f"{_pct(summary.statements.pct):>9}"
        f"{_pct(summary.branches.pct):>10}"
        f"{_pct(summary.functions.pct):>9}"
        f"{_pct(summary.lines.pct):>9}"
    )
    p()


def write_json_report(coverage_map, report_dir):
    # type: (CoverageMap, str) -> str
    path = os.path.join(report_dir, REPORT_FILENAME)
    atomic_write(path, json.dumps(coverage_map.to_dict()))
    return path


def check_coverage(summary, thresholds):
    # type: (CoverageSummary, t.Dict[str, float]) -> t.List[str]
    """Compare the summary against minimum percentages.

    Returns one error line per metric below its threshold, e.g.
    ``ERROR: Coverage for lines (90.12%) does not meet global threshold (95%)``.
    """
    errors = []
    for metric, threshold in thresholds.items():
        coverage = summary[metric].pct
        if coverage < threshold:
            errors.append(
                "ERROR: Coverage for %s (%s%%) does not meet global threshold (%s%%)"
                % (metric, _pct(coverage), _pct(threshold))
            )
    return errors
