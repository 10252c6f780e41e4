"""Code sandbox — runs one generated snippet as an async function.

The snippet is parsed with top-level ``await`` allowed, checked for
forbidden constructs, instrumented so every statement counts itself and
checks the abort signal, and then executed with only the scope and a
restricted builtins table in its globals.

The result is always a :class:`SandboxResult`; nothing the snippet does
escapes as an exception, except task cancellation.
"""

from __future__ import annotations

import ast
import asyncio
import builtins
import logging
import re
import textwrap
import traceback
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from ..core.abort import AbortSignal
from ..core.errors import (
    AbortedSignal,
    CodeExecutionError,
    InvalidCodeError,
    ThinkSignal,
    VMInterruptSignal,
    VMSignal,
)
from ..core.outcome import Aborted, Failure, Ok, Outcome, from_signal
from ..core.traces import LogTrace, TraceLog
from .binding import ObjectProxy
from .scope import is_valid_identifier
from .wrapper import ToolWrapper

logger = logging.getLogger(__name__)

FILENAME = "<generated>"
SNIPPET_NAME = "__snippet__"

# Never expose: open, exec, eval, compile, __import__, getattr, setattr,
# delattr, globals, locals, vars, dir, type, object, super, input, breakpoint
_ALLOWED_BUILTINS = (
    "abs", "all", "any", "ascii", "bin", "bool", "bytes", "callable", "chr",
    "dict", "divmod", "enumerate", "filter", "float", "format", "frozenset",
    "hash", "hex", "int", "isinstance", "issubclass", "iter", "len", "list",
    "map", "max", "min", "next", "oct", "ord", "pow", "range", "repr",
    "reversed", "round", "set", "slice", "sorted", "str", "sum", "tuple", "zip",
    "aiter", "anext",
    "ArithmeticError", "AssertionError", "AttributeError", "Exception",
    "IndexError", "KeyError", "LookupError", "NotImplementedError",
    "RuntimeError", "StopIteration", "StopAsyncIteration", "TimeoutError", "TypeError",
    "ValueError", "ZeroDivisionError",
)

# Introspection attributes that lead from a generator, coroutine or
# traceback back to real frames and their globals
BLOCKED_ATTRIBUTES = frozenset(
    {
        "gi_frame", "gi_code", "gi_yieldfrom",
        "cr_frame", "cr_code", "cr_await", "cr_origin",
        "ag_frame", "ag_code", "ag_await",
        "f_back", "f_globals", "f_locals", "f_builtins", "f_code", "f_trace",
        "tb_frame", "tb_next",
        "co_consts", "co_code",
    }
)

_DUNDER_RE = re.compile(r"__\w+__")

_WRAPPER_TEMPLATE = f"""
async def {SNIPPET_NAME}():
    try:
        pass
    finally:
        __capture__(__locals__())
"""


@dataclass
class SandboxResult:
    """What one snippet run produced."""

    outcome: Outcome
    lines_executed: int = 0
    variables: dict[str, Any] = field(default_factory=dict)
    traces: Optional[TraceLog] = None

    @property
    def success(self) -> bool:
        return isinstance(self.outcome, Ok)

    @property
    def error(self) -> Optional[BaseException]:
        return self.outcome.error if isinstance(self.outcome, Failure) else None

    @property
    def signal(self) -> Optional[VMSignal]:
        return getattr(self.outcome, "signal", None)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class _Validator(ast.NodeVisitor):
    """Reject imports, private names, frame introspection and top-level yield."""

    def __init__(self, code: str) -> None:
        self.code = code
        self._function_depth = 0

    def _reject(self, node: ast.AST, message: str) -> None:
        line = getattr(node, "lineno", None)
        where = f" (line {line})" if line else ""
        raise InvalidCodeError(f"{message}{where}", self.code)

    def visit_Import(self, node: ast.Import) -> None:
        self._reject(node, "Imports are not allowed")

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        self._reject(node, "Imports are not allowed")

    def visit_Name(self, node: ast.Name) -> None:
        # A bare "_" is the usual throwaway name
        if node.id.startswith("_") and node.id != "_":
            self._reject(node, f"Names starting with an underscore are not allowed: {node.id}")

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if node.attr.startswith("_"):
            self._reject(
                node, f"Attributes starting with an underscore are not allowed: {node.attr}"
            )
        if node.attr in BLOCKED_ATTRIBUTES:
            self._reject(node, f"Access to interpreter internals is not allowed: {node.attr}")
        self.generic_visit(node)

    def visit_Constant(self, node: ast.Constant) -> None:
        # Keys such as ["__builtins__"] reach around the attribute check
        if isinstance(node.value, str):
            match = _DUNDER_RE.search(node.value)
            if match:
                self._reject(
                    node, f"Strings naming dunder attributes are not allowed: {match.group(0)}"
                )

    def _visit_function(self, node: ast.AST) -> None:
        name = getattr(node, "name", "")
        if name.startswith("_"):
            self._reject(node, f"Names starting with an underscore are not allowed: {name}")
        self._function_depth += 1
        self.generic_visit(node)
        self._function_depth -= 1

    visit_FunctionDef = _visit_function
    visit_AsyncFunctionDef = _visit_function
    visit_Lambda = _visit_function

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        if node.name.startswith("_"):
            self._reject(node, f"Names starting with an underscore are not allowed: {node.name}")
        self.generic_visit(node)

    def _visit_yield(self, node: ast.AST) -> None:
        if self._function_depth == 0:
            self._reject(node, "'yield' is not allowed outside of a function")
        self.generic_visit(node)

    visit_Yield = _visit_yield
    visit_YieldFrom = _visit_yield


# ---------------------------------------------------------------------------
# Instrumentation
# ---------------------------------------------------------------------------


class _LineTracker(ast.NodeTransformer):
    """Insert ``__track__(lineno)`` before every statement."""

    _BLOCK_FIELDS = ("body", "orelse", "finalbody")

    def generic_visit(self, node: ast.AST) -> ast.AST:
        for name in self._BLOCK_FIELDS:
            block = getattr(node, name, None)
            if isinstance(block, list) and block and isinstance(block[0], ast.stmt):
                setattr(node, name, self._instrument(block))
        for name, value in ast.iter_fields(node):
            if name in self._BLOCK_FIELDS and isinstance(value, list):
                continue
            if isinstance(value, list):
                for item in value:
                    if isinstance(item, ast.AST):
                        self.visit(item)
            elif isinstance(value, ast.AST):
                self.visit(value)
        return node

    def _instrument(self, block: list[ast.stmt]) -> list[ast.stmt]:
        out: list[ast.stmt] = []
        for stmt in block:
            probe = ast.Expr(
                ast.Call(
                    func=ast.Name(id="__track__", ctx=ast.Load()),
                    args=[ast.Constant(stmt.lineno)],
                    keywords=[],
                )
            )
            out.append(ast.copy_location(probe, stmt))
            out.append(self.visit(stmt))
        return out


class _Tracker:
    def __init__(self, abort_signal: Optional[AbortSignal]) -> None:
        self.abort_signal = abort_signal
        self.lines = 0
        self.current_line = 0

    def __call__(self, line: int) -> None:
        self.lines += 1
        self.current_line = line
        if self.abort_signal is not None and self.abort_signal.aborted:
            raise AbortedSignal(self.abort_signal.reason_text())


def prepare(code: str, preload: Iterable[str] = ()) -> ast.Module:
    """Parse, validate and instrument *code*; return the wrapped module.

    Names in *preload* are bound as locals of the snippet from ``__scope__``
    before the first statement, so code such as ``count = count + 1`` can
    update a carried variable.

    Raises:
        InvalidCodeError: On syntax errors or forbidden constructs.
    """
    try:
        tree = compile(
            code,
            FILENAME,
            "exec",
            flags=ast.PyCF_ONLY_AST | ast.PyCF_ALLOW_TOP_LEVEL_AWAIT,
            dont_inherit=True,
        )
    except SyntaxError as err:
        raise InvalidCodeError(f"Syntax error on line {err.lineno}: {err.msg}", code) from err

    _Validator(code).visit(tree)
    tree = _LineTracker().visit(tree)

    preamble = ast.parse("\n".join(f"{name} = __scope__[{name!r}]" for name in preload)).body

    module = ast.parse(_WRAPPER_TEMPLATE)
    function = module.body[0]
    function.body[0].body = preamble + (tree.body or [ast.Pass()])  # type: ignore[attr-defined]
    return ast.fix_missing_locations(module)


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


def safe_builtins(traces: Optional[TraceLog]) -> dict[str, Any]:
    table = {name: getattr(builtins, name) for name in _ALLOWED_BUILTINS}

    def _print(*args: Any, sep: str = " ", end: str = "\n", **_: Any) -> None:
        message = sep.join(str(a) for a in args)
        logger.debug("snippet: %s", message)
        if traces is not None:
            traces.push(LogTrace(message=message))

    table["print"] = _print
    table["gather"] = asyncio.gather
    table["ThinkSignal"] = ThinkSignal
    # Needed for class statements inside snippets
    table["__build_class__"] = builtins.__build_class__
    return table


def _snippet_stack(err: BaseException, lines: list[str]) -> str:
    frames = [f for f in traceback.extract_tb(err.__traceback__) if f.filename == FILENAME]
    if not frames:
        return "No stack trace available"
    out = ["Traceback (generated code):"]
    for frame in frames:
        where = "<snippet>" if frame.name == SNIPPET_NAME else frame.name
        out.append(f"  line {frame.lineno}, in {where}")
        if frame.lineno and 0 < frame.lineno <= len(lines):
            out.append(f"    {lines[frame.lineno - 1].strip()}")
    out.append(f"{type(err).__name__}: {err}")
    return "\n".join(out)


def _failure(err: BaseException, lines: list[str]) -> Failure:
    message = f"{type(err).__name__}: {err}"
    return Failure(CodeExecutionError(message, _snippet_stack(err, lines)))


def _final_variables(
    scope: Mapping[str, Any], captured: Mapping[str, Any]
) -> dict[str, Any]:
    merged = {**scope, **captured}
    return {
        k: v
        for k, v in merged.items()
        if is_valid_identifier(k) and not isinstance(v, (ToolWrapper, ObjectProxy))
    }


async def run_async_function(
    scope: Mapping[str, Any],
    code: str,
    traces: Optional[TraceLog] = None,
    abort_signal: Optional[AbortSignal] = None,
    *,
    timeout: Optional[float] = None,
) -> SandboxResult:
    """Run *code* against *scope* and return the tagged outcome."""
    code = textwrap.dedent(code or "").strip()
    lines = code.splitlines()

    try:
        module = prepare(code, [k for k in scope if is_valid_identifier(k)])
        compiled = compile(module, FILENAME, "exec", dont_inherit=True)
    except InvalidCodeError as err:
        return SandboxResult(outcome=Failure(err), traces=traces)
    except SyntaxError as err:
        # Errors only the compiler sees, e.g. 'break' outside a loop
        invalid = InvalidCodeError(f"Syntax error on line {err.lineno}: {err.msg}", code)
        return SandboxResult(outcome=Failure(invalid), traces=traces)

    tracker = _Tracker(abort_signal)
    captured: dict[str, Any] = {}

    namespace: dict[str, Any] = dict(scope)
    namespace.update(
        {
            "__builtins__": safe_builtins(traces),
            "__name__": SNIPPET_NAME,
            "__track__": tracker,
            "__scope__": dict(scope),
            "__capture__": captured.update,
            "__locals__": builtins.locals,
        }
    )
    exec(compiled, namespace)  # noqa: S102 - validated and instrumented above
    snippet = namespace[SNIPPET_NAME]

    outcome: Outcome
    deadline = asyncio.timeout(timeout)
    try:
        async with deadline:
            value = await snippet()
        outcome = Ok(value)
    except TimeoutError as err:
        if deadline.expired():
            outcome = Failure(
                CodeExecutionError(
                    f"Execution timed out after {timeout} seconds",
                    f"Last line executed: {tracker.current_line}",
                )
            )
        else:
            outcome = _failure(err, lines)
    except AbortedSignal as signal:
        outcome = Aborted(signal.reason)
    except VMSignal as signal:
        if isinstance(signal, VMInterruptSignal):
            signal.truncated_code = "\n".join(lines[: tracker.current_line])
        outcome = from_signal(signal)
    except Exception as err:  # noqa: BLE001 - reported back to the model
        outcome = _failure(err, lines)

    logger.debug(
        "Snippet finished: %s after %d line(s)", type(outcome).__name__, tracker.lines
    )
    return SandboxResult(
        outcome=outcome,
        lines_executed=tracker.lines,
        variables=_final_variables(scope, captured),
        traces=traces,
    )
