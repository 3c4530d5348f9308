import os
import typing as t

from crosscov.settings._core import CrossCovConfig


DEFAULT_TEMP_DIR = ".crosscov_output"
DEFAULT_REPORT_DIR = "coverage"
DEFAULT_EXTENSION = ".py"

# Shaped after the defaults of the JavaScript test-exclude module, for Python
# projects: test suites, test helpers and packaging scripts are not measured.
DEFAULT_EXCLUDE = [
    "test/**",
    "tests/**",
    "**/test_*.py",
    "**/*_test.py",
    "**/conftest.py",
    "setup.py",
    "**/__pycache__/**",
    "**/site-packages/**",
]

# Opt-in signal enabling the cache even when the configuration does not.
CACHE_OPT_IN_ENV = "CROSSCOV_CACHE"
# Presence of this variable suppresses the cleanup of the temp directory.
CWD_OVERRIDE_ENV = "CROSSCOV_CWD"


def _derive_working_dir(config: "CoverageConfig") -> str:
    return os.path.abspath(config.cwd or os.getcwd())


def _derive_cache_directory(config: "CoverageConfig") -> str:
    if config._cache_dir:
        return os.path.abspath(config._cache_dir)
    return os.path.join(_derive_working_dir(config), ".cache", "crosscov")


def _derive_enable_cache(config: "CoverageConfig") -> bool:
    return bool(_derive_cache_directory(config)) and (
        config._enable_cache or config.full_source.get(CACHE_OPT_IN_ENV) == "enable"
    )


def _derive_extensions(config: "CoverageConfig") -> t.List[str]:
    extensions = []  # type: t.List[str]
    for ext in list(config._extension) + [DEFAULT_EXTENSION]:
        ext = ext.lower()
        if not ext:
            continue
        if not ext.startswith("."):
            ext = "." + ext
        # avoid duplicate extensions
        if ext not in extensions:
            extensions.append(ext)
    return extensions


def _derive_thresholds(config: "CoverageConfig") -> t.Dict[str, float]:
    return {
        "lines": config.lines,
        "functions": config.functions,
        "branches": config.branches,
        "statements": config.statements,
    }


class CoverageConfig(CrossCovConfig):
    __prefix__ = "crosscov"

    cwd = CrossCovConfig.v(
        t.Optional[str],
        "cwd",
        default=None,
        help_type="String",
        help="Working directory used to resolve relative paths. Defaults to the current directory",
    )

    temp_dir = CrossCovConfig.v(
        str,
        "temp_dir",
        default=DEFAULT_TEMP_DIR,
        help_type="String",
        help="Directory, relative to the working directory, receiving the per-process coverage snapshots",
    )

    _cache_dir = CrossCovConfig.v(
        t.Optional[str],
        "cache_dir",
        default=None,
        help_type="String",
        help="Directory of the instrumentation cache. Defaults to .cache/crosscov in the working directory",
    )

    _enable_cache = CrossCovConfig.v(
        bool,
        "enable_cache",
        default=False,
        help_type="Boolean",
        help="Cache instrumented source across runs. CROSSCOV_CACHE=enable has the same effect",
    )

    _extension = CrossCovConfig.v(
        list,
        "extension",
        map=str.strip,
        default=[],
        help_type="List",
        help="Additional source file extensions to instrument. .py is always instrumented",
    )

    include = CrossCovConfig.v(
        list,
        "include",
        map=str.strip,
        default=[],
        help_type="List",
        help="Glob patterns of the files to instrument, relative to the working directory",
    )

    _exclude = CrossCovConfig.v(
        list,
        "exclude",
        map=str.strip,
        default=[],
        help_type="List",
        help="Glob patterns of the files not to instrument. Replaces the default exclusion list",
    )

    include_path_overrides = CrossCovConfig.v(
        list,
        "include_path_overrides",
        map=str.strip,
        default=[],
        help_type="List",
        help="Path fragments forcing instrumentation of matching files regardless of the exclusion rules",
    )

    show_process_tree = CrossCovConfig.v(
        bool,
        "show_process_tree",
        default=False,
        help_type="Boolean",
        help="Record process lineage and display the process tree with the report",
    )

    source_map = CrossCovConfig.v(
        bool,
        "source_map",
        default=True,
        help_type="Boolean",
        help="Resolve inline and companion source maps and remap coverage onto original sources",
    )

    hook_run_path = CrossCovConfig.v(
        bool,
        "hook_run_path",
        default=False,
        help_type="Boolean",
        help="Also instrument scripts executed through runpy.run_path",
    )

    require = CrossCovConfig.v(
        list,
        "require",
        map=str.strip,
        default=[],
        help_type="List",
        help="Modules to import once the instrumentation hooks are in place",
    )

    all_files = CrossCovConfig.v(
        bool,
        "all",
        default=False,
        help_type="Boolean",
        help="Report on every source file of the working directory, including those never imported",
    )

    instrumenter = CrossCovConfig.v(
        str,
        "instrumenter",
        default="ast",
        help_type="String",
        help="Instrumenter to use: ast, noop, or the dotted path of an instrumenter class",
    )

    report_dir = CrossCovConfig.v(
        str,
        "report_dir",
        default=DEFAULT_REPORT_DIR,
        help_type="String",
        help="Directory, relative to the working directory, receiving file reports",
    )

    reporter = CrossCovConfig.v(
        list,
        "reporter",
        map=str.strip,
        default=["text"],
        help_type="List",
        help="Reports to produce: text, text-summary, json",
    )

    check_coverage = CrossCovConfig.v(
        bool,
        "check_coverage",
        default=False,
        help_type="Boolean",
        help="Fail the run when coverage does not meet the configured thresholds",
    )

    lines = CrossCovConfig.v(float, "lines", default=90.0, help_type="Float", help="Minimum line coverage")
    statements = CrossCovConfig.v(float, "statements", default=0.0, help_type="Float", help="Minimum statement coverage")
    functions = CrossCovConfig.v(float, "functions", default=0.0, help_type="Float", help="Minimum function coverage")
    branches = CrossCovConfig.v(float, "branches", default=0.0, help_type="Float", help="Minimum branch coverage")

    working_dir = CrossCovConfig.d(str, _derive_working_dir)
    cache_directory = CrossCovConfig.d(str, _derive_cache_directory)
    enable_cache = CrossCovConfig.d(bool, _derive_enable_cache)
    extensions = CrossCovConfig.d(list, _derive_extensions)
    exclude = CrossCovConfig.d(list, lambda c: list(c._exclude) if c._exclude else list(DEFAULT_EXCLUDE))
    thresholds = CrossCovConfig.d(dict, _derive_thresholds)


config = CoverageConfig()
