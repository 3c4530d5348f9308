#!/usr/bin/env python
import argparse
import logging
import os
import shutil
import subprocess
import sys
import typing as t

import crosscov
from crosscov.internal.utils.formats import asbool


# Do not use `crosscov.internal.logger.get_logger` here
# DEV: no actual rate limiting would apply here since we only have a few
#      logged lines
log = logging.getLogger(__name__)

USAGE = """
Execute the given command, collecting the coverage of every Python process it
starts, then report the coverage of the whole run.


Examples
crosscov-run python -m pytest
crosscov-run --all --check-coverage --lines 95 python -m myapp
"""


def _add_bootstrap_to_pythonpath(bootstrap_dir):
    # type: (str) -> None
    """
    Add our bootstrap directory to the head of $PYTHONPATH to ensure
    it is loaded before program code
    """
    python_path = os.environ.get("PYTHONPATH", "")

    if python_path:
        new_path = "%s%s%s" % (bootstrap_dir, os.path.pathsep, os.environ["PYTHONPATH"])
        os.environ["PYTHONPATH"] = new_path
    else:
        os.environ["PYTHONPATH"] = bootstrap_dir


def _export_options(args):
    # type: (argparse.Namespace) -> None
    """Pass the command line options to the processes of the run."""
    flags = {
        "CROSSCOV_ALL": args.all,
        "CROSSCOV_CHECK_COVERAGE": args.check_coverage,
        "CROSSCOV_SHOW_PROCESS_TREE": args.show_process_tree,
        "CROSSCOV_ENABLE_CACHE": args.cache,
        "CROSSCOV_HOOK_RUN_PATH": args.hook_run_path,
    }
    for name, value in flags.items():
        if value is not None:
            os.environ[name] = "true" if value else "false"

    for name in ("lines", "statements", "functions", "branches"):
        value = getattr(args, name)
        if value is not None:
            os.environ["CROSSCOV_%s" % name.upper()] = str(value)

    for name, values in (("CROSSCOV_INCLUDE", args.include), ("CROSSCOV_EXCLUDE", args.exclude)):
        if values:
            os.environ[name] = ",".join(values)


def _exit_status(returncode):
    # type: (int) -> int
    # Killed by a signal
    return 128 - returncode if returncode < 0 else returncode


def main(argv=None):
    # type: (t.Optional[t.List[str]]) -> int
    parser = argparse.ArgumentParser(
        description=USAGE,
        prog="crosscov-run",
        usage="crosscov-run [options] <your usual python command>",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument("command", nargs=argparse.REMAINDER, type=str, help="Command string to execute.")
    parser.add_argument("-a", "--all", action="store_true", default=None, help="report on all the source files")
    parser.add_argument(
        "--check-coverage", action="store_true", default=None, help="fail if coverage is below the thresholds"
    )
    parser.add_argument("--lines", type=float, help="minimum line coverage")
    parser.add_argument("--statements", type=float, help="minimum statement coverage")
    parser.add_argument("--functions", type=float, help="minimum function coverage")
    parser.add_argument("--branches", type=float, help="minimum branch coverage")
    parser.add_argument("-n", "--include", action="append", help="glob pattern of the files to instrument")
    parser.add_argument("-x", "--exclude", action="append", help="glob pattern of the files not to instrument")
    parser.add_argument("--cache", action=argparse.BooleanOptionalAction, default=None, help="cache instrumentation")
    parser.add_argument("--hook-run-path", action="store_true", default=None, help="instrument runpy.run_path")
    parser.add_argument("--show-process-tree", action="store_true", default=None, help="display the process tree")
    parser.add_argument("--report", action=argparse.BooleanOptionalAction, default=True, help="report at the end")
    parser.add_argument("-d", "--debug", help="enable debug mode (disabled by default)", action="store_true")
    parser.add_argument("-v", "--version", action="version", version="%(prog)s " + crosscov.__version__)
    args = parser.parse_args(argv)

    debug_mode = args.debug or asbool(os.environ.get("CROSSCOV_DEBUG", "false"))

    if debug_mode:
        logging.basicConfig(level=logging.DEBUG)
        os.environ["CROSSCOV_DEBUG"] = "true"

    if not args.command:
        parser.print_help()
        return 1

    # Find the executable path
    executable = shutil.which(args.command[0])
    if not executable:
        print("crosscov-run: failed to find executable '%s'.\n" % args.command[0], file=sys.stderr)
        parser.print_usage()
        return 1

    log.debug("program executable: %s", executable)

    # Inline imports, the configuration is read from the environment
    from crosscov.internal.coverage.session import CoverageSession
    from crosscov.settings.coverage import CWD_OVERRIDE_ENV
    from crosscov.settings.coverage import CoverageConfig

    _export_options(args)
    config = CoverageConfig()
    session = CoverageSession(config)

    # Reset before exporting the working directory, which prevents cleanups
    session.reset()
    os.environ[CWD_OVERRIDE_ENV] = session.cwd

    if config.all_files:
        session.add_all_files()
    elif config.show_process_tree:
        session.writer.write_process_info()
    session.process_info.export()

    root_dir = os.path.dirname(crosscov.__file__)
    log.debug("crosscov root: %s", root_dir)

    bootstrap_dir = os.path.join(root_dir, "bootstrap")
    log.debug("crosscov bootstrap: %s", bootstrap_dir)

    _add_bootstrap_to_pythonpath(bootstrap_dir)
    log.debug("PYTHONPATH: %s", os.environ["PYTHONPATH"])

    try:
        process = subprocess.Popen([executable] + args.command[1:])
    except OSError:
        print("crosscov-run: executable '%s' does not have executable permissions.\n" % executable, file=sys.stderr)
        parser.print_usage()
        return 1

    while True:
        try:
            returncode = process.wait()
            break
        except KeyboardInterrupt:
            # The child got the interrupt too, wait for it to write its coverage
            continue

    status = _exit_status(returncode)

    if args.report:
        session.report()

    if config.check_coverage and session.check_coverage():
        status = 1

    return status


if __name__ == "__main__":
    sys.exit(main())
