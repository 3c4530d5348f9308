import json

from hypothesis import given
from hypothesis import strategies as st
import pytest

from crosscov.internal.coverage.data import CoverageMap
from crosscov.internal.coverage.data import FileCoverage
from crosscov.internal.coverage.data import read_coverage_file
from tests.coverage import file_coverage


def test_file_coverage_to_dict():
    fc = file_coverage("/src/a.py", s=[1, 0], f=[2], b=[[1, 0]], content_hash="abc_1.0.0")
    data = fc.to_dict()

    assert data["path"] == "/src/a.py"
    assert data["s"] == {"0": 1, "1": 0}
    assert data["f"] == {"0": 2}
    assert data["b"] == {"0": [1, 0]}
    assert data["statementMap"]["1"] == {"start": {"line": 2, "column": 0}, "end": {"line": 2, "column": 10}}
    assert data["contentHash"] == "abc_1.0.0"

    assert FileCoverage.from_dict(json.loads(json.dumps(data))) == fc


def test_file_coverage_from_skeleton():
    skeleton = file_coverage("/src/a.py", s=[3, 4], f=[1], b=[[1, 1]]).skeleton()

    assert set(skeleton) == {"path", "statementMap", "fnMap", "branchMap"}

    fc = FileCoverage.from_skeleton(skeleton)
    assert fc.s == [0, 0]
    assert fc.f == [0]
    assert fc.b == [[0, 0]]


@pytest.mark.parametrize(
    "mutate",
    [
        lambda d: d.pop("path"),
        lambda d: d.update(s={"0": "x", "1": 0}),
        lambda d: d.update(s={"0": 1}),
        lambda d: d.update(b={}),
        lambda d: d.update(statementMap={"0": {"start": {"line": 1}}, "1": {}}),
        lambda d: d.update(fnMap=[]),
    ],
)
def test_file_coverage_from_dict_malformed(mutate):
    data = file_coverage("/src/a.py", s=[1, 0], f=[1], b=[[1, 0]]).to_dict()
    mutate(data)

    with pytest.raises((AttributeError, KeyError, TypeError, ValueError)):
        FileCoverage.from_dict(data)


def test_file_coverage_merge():
    fc = file_coverage("/src/a.py", s=[1, 0], f=[0], b=[[1, 0]])
    fc.merge(file_coverage("/src/a.py", s=[1, 2], f=[1], b=[[0, 3]]))

    assert fc.s == [2, 2]
    assert fc.f == [1]
    assert fc.b == [[1, 3]]


def test_file_coverage_merge_extends():
    fc = file_coverage("/src/a.py", s=[1])
    other = file_coverage("/src/a.py", s=[1, 5], f=[1], b=[[1, 0]])
    fc.merge(other)

    assert fc.s == [2, 5]
    assert fc.statement_map == other.statement_map
    assert fc.f == [1]
    assert fc.fn_map == other.fn_map
    assert fc.b == [[1, 0]]
    assert fc.branch_map == other.branch_map


def test_file_coverage_reset_counters_in_place():
    fc = file_coverage("/src/a.py", s=[1, 2], f=[3], b=[[4, 5]])
    s, f, b = fc.s, fc.f, fc.b[0]

    fc.reset_counters()

    assert s == [0, 0] and fc.s is s
    assert f == [0] and fc.f is f
    assert b == [0, 0] and fc.b[0] is b


def test_file_coverage_line_hits():
    fc = file_coverage("/src/a.py", s=[1, 0, 0])
    # Two statements on the first line, the most executed one counts
    fc.statement_map[1] = fc.statement_map[0]

    assert fc.line_hits() == {1: 1, 3: 0}


def test_coverage_map_add_copies():
    fc = file_coverage("/src/a.py", s=[1])
    coverage_map = CoverageMap()
    coverage_map.add_file_coverage(fc)
    coverage_map.add_file_coverage(fc)

    assert fc.s == [1]
    assert coverage_map.file_coverage_for("/src/a.py").s == [2]


def test_coverage_map_from_dict_drops_malformed_records():
    data = {
        "/src/a.py": file_coverage("/src/a.py", s=[1]).to_dict(),
        "/src/b.py": {"path": "/src/b.py", "s": {"0": 1}},
        "/src/c.py": "garbage",
    }

    coverage_map = CoverageMap.from_dict(data)

    assert coverage_map.files() == ["/src/a.py"]


def test_coverage_map_from_dict_not_an_object():
    with pytest.raises(TypeError):
        CoverageMap.from_dict([])


def test_coverage_map_filter():
    coverage_map = CoverageMap()
    coverage_map.add_file_coverage(file_coverage("/src/a.py"))
    coverage_map.add_file_coverage(file_coverage("/tests/test_a.py"))

    filtered = coverage_map.filter(lambda path: path.startswith("/src/"))

    assert filtered.files() == ["/src/a.py"]
    assert len(coverage_map) == 2


def test_coverage_map_summary():
    coverage_map = CoverageMap()
    coverage_map.add_file_coverage(file_coverage("/src/a.py", s=[1, 0], f=[1], b=[[1, 0]]))

    summary = coverage_map.summary()

    assert summary.statements.pct == 50.0
    assert summary.functions.pct == 100.0
    assert summary.branches.pct == 50.0


def test_read_coverage_file(tmp_path):
    path = tmp_path / "report.json"
    path.write_text(json.dumps({"/src/a.py": file_coverage("/src/a.py", s=[1]).to_dict()}))

    assert read_coverage_file(str(path)).files() == ["/src/a.py"]


@pytest.mark.parametrize("content", ["", "{", "[1, 2]", '"string"', "null"])
def test_read_coverage_file_corrupt(tmp_path, content):
    path = tmp_path / "bad.json"
    path.write_text(content)

    assert len(read_coverage_file(str(path))) == 0


def test_read_coverage_file_missing(tmp_path):
    assert len(read_coverage_file(str(tmp_path / "missing.json"))) == 0


counters = st.lists(st.integers(min_value=0, max_value=1000), min_size=3, max_size=3)


@given(st.lists(counters, min_size=1, max_size=6), st.randoms())
def test_coverage_map_merge_is_order_independent(snapshots, random):
    def merged(order):
        coverage_map = CoverageMap()
        for s in order:
            coverage_map.merge(CoverageMap.from_dict({"/src/a.py": file_coverage("/src/a.py", s=s).to_dict()}))
        return coverage_map

    shuffled = list(snapshots)
    random.shuffle(shuffled)

    expected = [sum(hits) for hits in zip(*snapshots)]
    assert merged(snapshots).file_coverage_for("/src/a.py").s == expected
    assert merged(shuffled) == merged(snapshots)
