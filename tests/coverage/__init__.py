from crosscov.internal.coverage.data import FileCoverage
from crosscov.internal.coverage.data import location


def file_coverage(path, s=(0,), f=(), b=(), content_hash=None):
    """A record with one statement per line and the given counters."""
    return FileCoverage(
        path=path,
        statement_map=[location(i + 1, 0, i + 1, 10) for i in range(len(s))],
        fn_map=[
            {"name": "f%d" % i, "decl": location(i + 1, 0, i + 1, 6), "loc": location(i + 1, 0, i + 1, 10), "line": i + 1}
            for i in range(len(f))
        ],
        branch_map=[
            {
                "type": "if",
                "line": i + 1,
                "loc": location(i + 1, 0, i + 1, 10),
                "locations": [location(i + 1, 4, i + 1, 8)] * len(arms),
            }
            for i, arms in enumerate(b)
        ],
        s=list(s),
        f=list(f),
        b=[list(arms) for arms in b],
        content_hash=content_hash,
    )
