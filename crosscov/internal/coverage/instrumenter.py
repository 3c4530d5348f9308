"""Source instrumenters.

An instrumenter turns the source of a module into source that counts its own
execution, and describes the counters in a coverage skeleton. The default
:class:`AstInstrumenter` counts statements, functions and the two arms of
every ``if`` statement. Instrumented modules bind the live record returned by
the collector to the ``__crosscov__`` global when they start executing::

    __crosscov__ = __import__("crosscov.internal.coverage.collector", fromlist=["register"]).register({...})
    __crosscov__.s[0] += 1
    def f():
        __crosscov__.f[0] += 1
        __crosscov__.s[1] += 1
        return 1

Comments and formatting are not preserved by the rewrite, so line numbers in
tracebacks of instrumented modules may differ from the original source. The
locations stored in the coverage skeleton always refer to the original source.
"""
import abc
import ast
import importlib
import typing as t

from crosscov._exceptions import InstrumenterError
from crosscov.internal.coverage.data import FileCoverage
from crosscov.internal.coverage.data import location


COUNTER = "__crosscov__"
COLLECTOR_MODULE = "crosscov.internal.coverage.collector"

# Body returned in discovery mode, where files are only enumerated and must
# not run any of their code when loaded.
STUB = "def x():\n    pass\n"


class Instrumenter(abc.ABC):
    """Interface of the instrumenters."""

    name = "base"
    version = "0"

    @abc.abstractmethod
    def instrument(self, code, filename, source_map=None):
        # type: (str, str, t.Optional[t.Dict[str, t.Any]]) -> str
        """Return the instrumented version of ``code``.

        Any exception means the file cannot be instrumented.
        """

    def last_file_coverage(self):
        # type: () -> t.Optional[FileCoverage]
        """The coverage skeleton of the last instrumented file, with zero hits."""
        return None


class NoopInstrumenter(Instrumenter):
    name = "noop"
    version = "1"

    def instrument(self, code, filename, source_map=None):
        return code


def _node_location(node):
    # type: (t.Any) -> t.Dict[str, t.Dict[str, int]]
    return location(
        node.lineno,
        node.col_offset,
        getattr(node, "end_lineno", None) or node.lineno,
        getattr(node, "end_col_offset", None) or node.col_offset,
    )


def _increment(kind, index, arm=None):
    # type: (str, int, t.Optional[int]) -> ast.stmt
    counters = ast.Attribute(value=ast.Name(id=COUNTER, ctx=ast.Load()), attr=kind, ctx=ast.Load())
    target = ast.Subscript(value=counters, slice=ast.Constant(value=index), ctx=ast.Store())  # type: ast.expr
    if arm is not None:
        target.ctx = ast.Load()
        target = ast.Subscript(value=target, slice=ast.Constant(value=arm), ctx=ast.Store())
    return ast.AugAssign(target=target, op=ast.Add(), value=ast.Constant(value=1))


def _is_docstring(node):
    # type: (ast.stmt) -> bool
    return (
        isinstance(node, ast.Expr) and isinstance(node.value, ast.Constant) and isinstance(node.value.value, str)
    )


def _is_future_import(node):
    # type: (ast.stmt) -> bool
    return isinstance(node, ast.ImportFrom) and node.module == "__future__"


class _Counters:
    def __init__(self):
        self.statements = []  # type: t.List[t.Dict[str, t.Any]]
        self.functions = []  # type: t.List[t.Dict[str, t.Any]]
        self.branches = []  # type: t.List[t.Dict[str, t.Any]]

    def statement(self, node):
        # type: (ast.stmt) -> ast.stmt
        self.statements.append(_node_location(node))
        return _increment("s", len(self.statements) - 1)

    def function(self, node):
        # type: (t.Union[ast.FunctionDef, ast.AsyncFunctionDef]) -> ast.stmt
        prefix = "async def " if isinstance(node, ast.AsyncFunctionDef) else "def "
        self.functions.append(
            {
                "name": node.name,
                "decl": location(node.lineno, node.col_offset, node.lineno, node.col_offset + len(prefix + node.name)),
                "loc": _node_location(node),
                "line": node.lineno,
            }
        )
        return _increment("f", len(self.functions) - 1)

    def branch(self, node):
        # type: (ast.If) -> int
        arms = [_node_location(node.body[0])]
        arms.append(_node_location(node.orelse[0]) if node.orelse else _node_location(node))
        self.branches.append({"type": "if", "line": node.lineno, "loc": _node_location(node), "locations": arms})
        return len(self.branches) - 1


class _BodyInstrumenter:
    """Interleave counters with the statements of nested bodies.

    Counters are allocated in source order, a statement before the
    statements it contains.
    """

    def __init__(self, counters):
        # type: (_Counters) -> None
        self.counters = counters

    def body(self, stmts, preamble=()):
        # type: (t.List[ast.stmt], t.Sequence[ast.stmt]) -> t.List[ast.stmt]
        new_body = list(preamble)  # type: t.List[ast.stmt]
        for stmt in stmts:
            new_body.append(self.counters.statement(stmt))
            new_body.append(self.statement(stmt))
        return new_body

    def docstring_body(self, stmts, preamble=()):
        # type: (t.List[ast.stmt], t.Sequence[ast.stmt]) -> t.List[ast.stmt]
        if stmts and _is_docstring(stmts[0]):
            return [stmts[0]] + self.body(stmts[1:], preamble)
        return self.body(stmts, preamble)

    def statement(self, node):
        # type: (ast.stmt) -> ast.stmt
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            # The function counter is allocated before the ones of its body
            increment = self.counters.function(node)
            node.body = self.docstring_body(node.body, [increment])

        elif isinstance(node, ast.ClassDef):
            node.body = self.docstring_body(node.body)

        elif isinstance(node, ast.If):
            index = self.counters.branch(node)
            node.body = self.body(node.body, [_increment("b", index, 0)])
            node.orelse = self.body(node.orelse, [_increment("b", index, 1)])

        elif isinstance(node, (ast.For, ast.AsyncFor, ast.While)):
            node.body = self.body(node.body)
            if node.orelse:
                node.orelse = self.body(node.orelse)

        elif isinstance(node, (ast.With, ast.AsyncWith)):
            node.body = self.body(node.body)

        elif isinstance(node, (ast.Try, getattr(ast, "TryStar", ast.Try))):
            node.body = self.body(node.body)
            for handler in node.handlers:
                handler.body = self.body(handler.body)
            if node.orelse:
                node.orelse = self.body(node.orelse)
            if node.finalbody:
                node.finalbody = self.body(node.finalbody)

        elif isinstance(node, getattr(ast, "Match", ())):
            for case in node.cases:
                case.body = self.body(case.body)

        return node


class AstInstrumenter(Instrumenter):
    name = "ast"
    version = "1"

    def __init__(self):
        # type: () -> None
        self._last = None  # type: t.Optional[FileCoverage]

    def last_file_coverage(self):
        return self._last

    def instrument(self, code, filename, source_map=None):
        # type: (str, str, t.Optional[t.Dict[str, t.Any]]) -> str
        self._last = None

        tree = ast.parse(code, filename=filename)
        counters = _Counters()

        # The docstring and the __future__ imports must stay at the top of
        # the module and are not counted.
        head = 0
        if tree.body and _is_docstring(tree.body[0]):
            head = 1
        while head < len(tree.body) and _is_future_import(tree.body[head]):
            head += 1

        body = _BodyInstrumenter(counters).body(tree.body[head:])

        fc = FileCoverage(
            path=filename,
            statement_map=counters.statements,
            fn_map=counters.functions,
            branch_map=counters.branches,
            s=[0] * len(counters.statements),
            f=[0] * len(counters.functions),
            b=[[0, 0] for _ in counters.branches],
        )
        header = ast.parse(
            "%s = __import__(%r, fromlist=[%r]).register(%r)" % (COUNTER, COLLECTOR_MODULE, "register", fc.skeleton())
        ).body

        tree.body = tree.body[:head] + header + body
        ast.fix_missing_locations(tree)
        instrumented = ast.unparse(tree)

        self._last = fc
        return instrumented


def create_instrumenter(name):
    # type: (str) -> Instrumenter
    """Create the instrumenter called ``name``.

    ``name`` is ``ast``, ``noop`` or the import path of an :class:`Instrumenter`
    subclass, either ``package.module:Class`` or ``package.module.Class``.
    """
    if name == "ast":
        return AstInstrumenter()
    if name == "noop":
        return NoopInstrumenter()

    module_name, sep, class_name = name.partition(":")
    if not sep:
        module_name, _, class_name = name.rpartition(".")
    if not module_name or not class_name:
        raise InstrumenterError("Invalid instrumenter %r" % name)

    try:
        instrumenter_class = getattr(importlib.import_module(module_name), class_name)
    except (ImportError, AttributeError) as e:
        raise InstrumenterError("Cannot load instrumenter %r: %s" % (name, e)) from e

    if not isinstance(instrumenter_class, type) or not issubclass(instrumenter_class, Instrumenter):
        raise InstrumenterError("%r is not an instrumenter" % name)
    return instrumenter_class()
