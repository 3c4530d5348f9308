import ast
import importlib
from itertools import product
import os
from os.path import split
from os.path import splitext
import shutil
import sys
from tempfile import NamedTemporaryFile
from tempfile import mkdtemp
import time

from _pytest.runner import call_and_report
from _pytest.runner import pytest_runtest_protocol as default_pytest_runtest_protocol
import pytest

from crosscov.internal import logger
from crosscov.internal.coverage.collector import get_collector
from crosscov.internal.coverage.hooks import RunPathInterceptor
from crosscov.internal.coverage.session import CoverageSession
from crosscov.internal.module import ModuleInterceptor
from crosscov.settings.coverage import CoverageConfig
from tests.utils import call_program


code_to_pyc = getattr(importlib._bootstrap_external, "_code_to_timestamp_pyc")

CROSSCOV_RUN = [sys.executable, "-m", "crosscov.commands.crosscov_run"]


@pytest.fixture(autouse=True)
def no_log_rate_limit(monkeypatch):
    # Every warning of a test must reach the log capture
    monkeypatch.setattr(logger, "_rate_limit", 0)


@pytest.fixture(autouse=True)
def clean_crosscov_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith(("CROSSCOV_", "_CROSSCOV_")):
            monkeypatch.delenv(name)

    yield

    # Sessions export the lineage of the process
    for name in list(os.environ):
        if name.startswith(("CROSSCOV_", "_CROSSCOV_")):
            del os.environ[name]


@pytest.fixture(autouse=True)
def clear_collector():
    yield
    collector = get_collector(create=False)
    if collector is not None:
        collector.clear()


@pytest.fixture(autouse=True)
def uninstall_interceptors():
    yield
    for interceptor in (ModuleInterceptor, RunPathInterceptor):
        if interceptor.is_installed():
            interceptor.uninstall()


@pytest.fixture
def coverage_config(tmp_path):
    def _config(**values):
        source = {"CROSSCOV_CWD": str(tmp_path)}
        source.update({"CROSSCOV_%s" % k.upper(): v for k, v in values.items()})
        return CoverageConfig(source=source)

    return _config


@pytest.fixture
def coverage_session(coverage_config):
    sessions = []

    def _session(**values):
        session = CoverageSession(coverage_config(**values))
        session.reset()
        sessions.append(session)
        return session

    yield _session

    for session in sessions:
        session.unwrap()


def dump_code_to_file(code, file):
    file.write(code_to_pyc(code, time.time(), len(code.co_code)))
    file.flush()


def unwind_params(params):
    if params is None:
        yield None
        return

    for _ in product(*([(k, v) for v in vs] for k, vs in params.items())):
        yield dict(_)


class FunctionDefFinder(ast.NodeVisitor):
    def __init__(self, func_name):
        super(FunctionDefFinder, self).__init__()
        self.func_name = func_name
        self._body = None

    def generic_visit(self, node):
        return self._body or super(FunctionDefFinder, self).generic_visit(node)

    def visit_FunctionDef(self, node):
        if node.name == self.func_name:
            self._body = node.body

    def find(self, file):
        with open(file) as f:
            t = ast.parse(f.read())
            self.visit(t)
            t.body = self._body
            return t


def is_stream_ok(stream, expected):
    if expected is None:
        return True

    if isinstance(expected, str):
        ex = expected.encode("utf-8")
    elif isinstance(expected, bytes):
        ex = expected
    else:
        # Assume it's a callable condition
        return expected(stream.decode("utf-8"))

    return stream == ex


def run_function_from_file(item, params=None):
    file, _, func = item.location
    marker = item.get_closest_marker("subprocess")
    run_module = marker.kwargs.get("run_module", False)

    args = [sys.executable]

    timeout = marker.kwargs.get("timeout", None)

    # Run through crosscov-run in crosscov-run mode
    if marker.kwargs.get("crosscov_run", False):
        args = CROSSCOV_RUN + ["--no-report"] + args

    # Add -m if running script as a module
    if run_module:
        args.append("-m")

    # Override environment variables for the subprocess
    env = os.environ.copy()
    pythonpath = os.getenv("PYTHONPATH", None)
    base_path = os.path.dirname(os.path.dirname(__file__))
    env["PYTHONPATH"] = os.pathsep.join((base_path, pythonpath)) if pythonpath is not None else base_path

    for key, value in marker.kwargs.get("env", {}).items():
        if value is None:  # None means remove the variable
            env.pop(key, None)
        else:
            env[key] = value

    if params is not None:
        env.update(params)

    expected_status = marker.kwargs.get("status", 0)
    expected_out = marker.kwargs.get("out", "")
    expected_err = marker.kwargs.get("err", "")

    custom_temp_dir = mkdtemp(prefix="crosscov_subprocess_")

    try:
        with NamedTemporaryFile(mode="wb", suffix=".pyc", dir=custom_temp_dir, delete=False) as fp:
            dump_code_to_file(compile(FunctionDefFinder(func).find(file), file, "exec"), fp.file)

            # If running a module with -m, we change directory to the module's
            # folder and run the module directly.
            if run_module:
                cwd, module = split(splitext(fp.name)[0])
                args.append(module)
            else:
                cwd = custom_temp_dir
                args.append(fp.name)

            # Add any extra requested args
            args.extend(marker.kwargs.get("args", []))

            out, err, status, _ = call_program(*args, env=env, cwd=cwd, timeout=timeout)

            if status != expected_status:
                raise AssertionError(
                    "Expected status %s, got %s."
                    "\n=== Captured STDOUT ===\n%s=== End of captured STDOUT ==="
                    "\n=== Captured STDERR ===\n%s=== End of captured STDERR ==="
                    % (expected_status, status, out.decode("utf-8"), err.decode("utf-8"))
                )

            if not is_stream_ok(out, expected_out):
                raise AssertionError("STDOUT: Expected [%s] got [%s]" % (expected_out, out))

            if not is_stream_ok(err, expected_err):
                raise AssertionError("STDERR: Expected [%s] got [%s]" % (expected_err, err))
    finally:
        shutil.rmtree(custom_temp_dir, ignore_errors=True)


@pytest.hookimpl(tryfirst=True)
def pytest_runtest_protocol(item):
    if item.get_closest_marker("skip"):
        return default_pytest_runtest_protocol(item, None)

    skipif = item.get_closest_marker("skipif")
    if skipif:
        return default_pytest_runtest_protocol(item, None)

    marker = item.get_closest_marker("subprocess")
    if marker:
        params = marker.kwargs.get("parametrize", None)
        ihook = item.ihook
        base_name = item.nodeid

        for ps in unwind_params(params):
            nodeid = (base_name + str(ps)) if ps is not None else base_name

            # Start
            ihook.pytest_runtest_logstart(nodeid=nodeid, location=item.location)

            # Setup
            report = call_and_report(item, "setup", log=False)
            report.nodeid = nodeid
            ihook.pytest_runtest_logreport(report=report)

            # Call
            item.runtest = lambda: run_function_from_file(item, ps)  # noqa: B023
            report = call_and_report(item, "call", log=False)
            report.nodeid = nodeid
            ihook.pytest_runtest_logreport(report=report)

            # Teardown
            report = call_and_report(item, "teardown", log=False, nextitem=None)
            report.nodeid = nodeid
            ihook.pytest_runtest_logreport(report=report)

            # Finish
            ihook.pytest_runtest_logfinish(nodeid=nodeid, location=item.location)

        return True
