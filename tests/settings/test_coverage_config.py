import os

import pytest

from crosscov.settings.coverage import DEFAULT_EXCLUDE
from crosscov.settings.coverage import DEFAULT_REPORT_DIR
from crosscov.settings.coverage import DEFAULT_TEMP_DIR
from crosscov.settings.coverage import CoverageConfig
from tests.utils import override_env


def test_defaults(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    config = CoverageConfig()

    assert config.working_dir == str(tmp_path)
    assert config.temp_dir == DEFAULT_TEMP_DIR
    assert config.report_dir == DEFAULT_REPORT_DIR
    assert config.cache_directory == os.path.join(str(tmp_path), ".cache", "crosscov")
    assert config.enable_cache is False
    assert config.extensions == [".py"]
    assert config.include == []
    assert config.exclude == DEFAULT_EXCLUDE
    assert config.instrumenter == "ast"
    assert config.reporter == ["text"]
    assert config.source_map is True
    assert config.show_process_tree is False
    assert config.hook_run_path is False
    assert config.all_files is False
    assert config.thresholds == {"lines": 90.0, "functions": 0.0, "branches": 0.0, "statements": 0.0}


def test_code_source(tmp_path):
    config = CoverageConfig(
        source={
            "CROSSCOV_CWD": str(tmp_path),
            "CROSSCOV_INCLUDE": "src/**, lib/*.py",
            "CROSSCOV_EXCLUDE": "src/generated/**",
            "CROSSCOV_EXTENSION": "pysrc,.PYX",
            "CROSSCOV_LINES": "75.5",
        }
    )

    assert config.working_dir == str(tmp_path)
    assert config.include == ["src/**", "lib/*.py"]
    assert config.exclude == ["src/generated/**"]
    assert config.extensions == [".pysrc", ".pyx", ".py"]
    assert config.thresholds["lines"] == 75.5


def test_environment_overrides_code_source(tmp_path):
    with override_env(dict(CROSSCOV_TEMP_DIR="env_output", CROSSCOV_SHOW_PROCESS_TREE="true")):
        config = CoverageConfig(source={"CROSSCOV_TEMP_DIR": "code_output", "CROSSCOV_CWD": str(tmp_path)})

    assert config.temp_dir == "env_output"
    assert config.show_process_tree is True


@pytest.mark.parametrize(
    "env,expected",
    [
        ({}, False),
        ({"CROSSCOV_ENABLE_CACHE": "true"}, True),
        ({"CROSSCOV_ENABLE_CACHE": "false"}, False),
        ({"CROSSCOV_CACHE": "enable"}, True),
        ({"CROSSCOV_CACHE": "true"}, False),
    ],
)
def test_enable_cache(tmp_path, env, expected):
    with override_env(env):
        config = CoverageConfig(source={"CROSSCOV_CWD": str(tmp_path)})

    assert config.enable_cache is expected


def test_cache_dir(tmp_path):
    config = CoverageConfig(source={"CROSSCOV_CWD": str(tmp_path), "CROSSCOV_CACHE_DIR": str(tmp_path / "cache")})

    assert config.cache_directory == str(tmp_path / "cache")


def test_all_files(tmp_path):
    with override_env(dict(CROSSCOV_ALL="true")):
        assert CoverageConfig().all_files is True
