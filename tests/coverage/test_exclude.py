import os

import pytest

from crosscov.internal.coverage.exclude import TestExclude
from crosscov.settings.coverage import DEFAULT_EXCLUDE
from tests.utils import write_module


@pytest.mark.parametrize(
    "rel_file,result",
    [
        ("app.py", True),
        ("pkg/app.py", True),
        ("tests/test_app.py", False),
        ("test/helpers.py", False),
        ("pkg/test_app.py", False),
        ("pkg/app_test.py", False),
        ("conftest.py", False),
        ("pkg/conftest.py", False),
        ("setup.py", False),
        ("pkg/setup.py", True),
        ("venv/lib/site-packages/lib.py", False),
    ],
)
def test_default_exclude(tmp_path, rel_file, result):
    exclude = TestExclude(str(tmp_path), exclude=DEFAULT_EXCLUDE)

    assert exclude.should_instrument(os.path.join(str(tmp_path), rel_file)) is result


def test_outside_of_cwd(tmp_path):
    exclude = TestExclude(str(tmp_path / "project"))

    assert not exclude.should_instrument(str(tmp_path / "other.py"))
    assert not exclude.should_instrument(str(tmp_path / "project-other" / "app.py"))
    assert exclude.should_instrument(str(tmp_path / "project" / "app.py"))


def test_include(tmp_path):
    exclude = TestExclude(str(tmp_path), include=["src/**"], exclude=["src/generated/**"])

    assert exclude.should_instrument(str(tmp_path / "src" / "app.py"))
    assert not exclude.should_instrument(str(tmp_path / "lib" / "app.py"))
    assert not exclude.should_instrument(str(tmp_path / "src" / "generated" / "app.py"))


def test_relative_path_is_used_when_given(tmp_path):
    exclude = TestExclude(str(tmp_path), exclude=["skipped.py"])

    assert not exclude.should_instrument("/somewhere/else.py", "skipped.py")
    assert exclude.should_instrument("/somewhere/else.py", "kept.py")


def test_glob(tmp_path):
    write_module(tmp_path, "app.py", "")
    write_module(tmp_path, "pkg/mod.py", "")
    write_module(tmp_path, "pkg/data.json", "")
    write_module(tmp_path, "pkg/gen.pysrc", "")
    write_module(tmp_path, "tests/test_app.py", "")
    write_module(tmp_path, ".hidden/secret.py", "")

    exclude = TestExclude(str(tmp_path), exclude=DEFAULT_EXCLUDE)

    assert [os.path.relpath(p, str(tmp_path)) for p in exclude.glob()] == ["app.py", os.path.join("pkg", "mod.py")]
    assert [os.path.relpath(p, str(tmp_path)) for p in exclude.glob(extensions=(".pysrc",))] == [
        os.path.join("pkg", "gen.pysrc")
    ]
