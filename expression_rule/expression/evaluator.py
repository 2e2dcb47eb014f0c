# -*- coding: utf-8 -*-
"""
Expression compiler and evaluator.

Expressions use Python expression syntax evaluated by simpleeval, plus the
conditional form if(cond, then, else) that rule authors are used to from
the host's default configuration:

    if(humidity > 50, 1, 0)
    humidity > 50 and temperature < 30
    1 if sqrt(x**2 + y**2) > 10 else 0

Compilation parses the text once and checks every symbol against the
variable bindings, the math constants and the function whitelist.
Evaluation re-runs the parsed tree against the current slot values.
"""
import ast
import io
import math
import sys
import tokenize
from collections import ChainMap
from typing import Dict, List, Tuple
from loguru import logger
from simpleeval import DEFAULT_OPERATORS, SimpleEval, InvalidExpression

from expression_rule.expression.bindings import BindingsSnapshot
from expression_rule.expression.errors import CompileError, NonFiniteResult


CONSTANTS: Dict[str, float] = {
    "pi": math.pi,
    "e": math.e,
    "tau": math.tau,
    "epsilon": sys.float_info.epsilon,
    "inf": math.inf,
}


def _clamp(value, lower, upper):
    return max(lower, min(value, upper))


def _avg(*values):
    if not values:
        raise ValueError("avg() needs at least one value")
    return sum(values) / len(values)


FUNCTIONS = {
    "abs": abs,
    "min": min,
    "max": max,
    "round": round,
    "sqrt": math.sqrt,
    "exp": math.exp,
    "log": math.log,
    "log10": math.log10,
    "pow": math.pow,
    "floor": math.floor,
    "ceil": math.ceil,
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
    "clamp": _clamp,
    "avg": _avg,
}

# Node types an expression may contain
_ALLOWED_NODES = (
    ast.Expr,
    ast.Constant,
    ast.Name,
    ast.BinOp,
    ast.UnaryOp,
    ast.BoolOp,
    ast.Compare,
    ast.IfExp,
    ast.Call,
    ast.operator,
    ast.unaryop,
    ast.boolop,
    ast.cmpop,
    ast.expr_context,
)

# Tokens after which "if(" starts a function call rather than a conditional
_CALL_CONTEXT_KEYWORDS = {"and", "or", "not", "else", "in", "is"}


def _rewrite_if_calls(text: str) -> str:
    """Rename the if(...) function form to if_(...) so Python can parse it."""
    try:
        tokens = list(tokenize.generate_tokens(io.StringIO(text).readline))
    except (tokenize.TokenError, SyntaxError):
        return text

    line_offsets = [0]
    for line in text.splitlines(keepends=True):
        line_offsets.append(line_offsets[-1] + len(line))

    positions: List[int] = []
    prev = None
    significant = [t for t in tokens if t.type not in (
        tokenize.NL, tokenize.NEWLINE, tokenize.COMMENT,
        tokenize.INDENT, tokenize.DEDENT, tokenize.ENDMARKER)]
    for i, tok in enumerate(significant):
        nxt = significant[i + 1] if i + 1 < len(significant) else None
        if tok.type == tokenize.NAME and tok.string == "if" and nxt is not None and nxt.string == "(":
            call_context = (
                prev is None
                or (prev.type == tokenize.OP and prev.string not in (")", "]", "}"))
                or (prev.type == tokenize.NAME and prev.string in _CALL_CONTEXT_KEYWORDS)
            )
            if call_context:
                row, col = tok.start
                positions.append(line_offsets[row - 1] + col)
        prev = tok

    for pos in reversed(positions):
        text = text[:pos] + "if_" + text[pos + 2:]
    return text


class _IfCallToConditional(ast.NodeTransformer):
    """Turn if_(cond, a, b) into a conditional so only one branch runs."""

    def __init__(self, expression: str):
        self.expression = expression

    def visit_Call(self, node: ast.Call):
        self.generic_visit(node)
        if isinstance(node.func, ast.Name) and node.func.id == "if_":
            if len(node.args) != 3 or node.keywords:
                raise CompileError("if() takes exactly 3 arguments", self.expression)
            return ast.copy_location(
                ast.IfExp(test=node.args[0], body=node.args[1], orelse=node.args[2]),
                node,
            )
        return node


class CompiledExpression:
    """
    A parsed expression bound to a snapshot of variable slots.

    Never mutated after construction; recompiling produces a new object.
    """

    def __init__(self, source: str, node: ast.Expr, bindings: BindingsSnapshot):
        self.source = source
        self.bindings = bindings
        self._node = node
        self._evaluator = SimpleEval(
            names=ChainMap(bindings, CONSTANTS),
            functions=FUNCTIONS,
        )

    @property
    def variables(self) -> Tuple[str, ...]:
        return tuple(self.bindings)

    def evaluate(self) -> float:
        """
        Compute the expression with the current slot values.

        Booleans become 1.0/0.0. Arithmetic faults and non-numeric results
        come back as NaN; NaN and infinities are logged, not raised.
        """
        try:
            raw = self._evaluator.eval(self.source, previously_parsed=self._node)
        except (ZeroDivisionError, OverflowError, ValueError, TypeError,
                RecursionError, InvalidExpression) as e:
            logger.warning(f"Unable to evaluate expression '{self.source}': {e}")
            return math.nan

        if isinstance(raw, (bool, int, float)):
            try:
                value = float(raw)
            except OverflowError:
                value = math.inf if raw > 0 else -math.inf
        else:
            logger.warning(f"Expression '{self.source}' returned non-numeric {type(raw).__name__}")
            value = math.nan

        logger.debug(f"Expression '{self.source}' = {value}")
        if not math.isfinite(value):
            logger.warning(str(NonFiniteResult(value, self.source)))
        return value


def _check_tree(node: ast.Expr, bindings: BindingsSnapshot, expression: str):
    callees = {id(n.func) for n in ast.walk(node) if isinstance(n, ast.Call)}
    for child in ast.walk(node):
        if not isinstance(child, _ALLOWED_NODES):
            raise CompileError(f"Unsupported syntax: {type(child).__name__}", expression)

        if isinstance(child, (ast.operator, ast.unaryop, ast.cmpop)) and type(child) not in DEFAULT_OPERATORS:
            raise CompileError(f"Unsupported operator: {type(child).__name__}", expression)

        if isinstance(child, ast.Constant) and not isinstance(child.value, (bool, int, float)):
            raise CompileError(f"Unsupported literal {child.value!r}", expression)

        if isinstance(child, ast.Call):
            if not isinstance(child.func, ast.Name) or child.func.id not in FUNCTIONS:
                name = getattr(child.func, "id", type(child.func).__name__)
                raise CompileError(f"Unknown function '{name}'", expression)
            if child.keywords:
                raise CompileError("Keyword arguments are not supported", expression)

        elif isinstance(child, ast.Name) and id(child) not in callees:
            if child.id not in bindings and child.id not in CONSTANTS:
                raise CompileError(f"Undefined symbol '{child.id}'", expression)


def compile_expression(source: str, bindings: BindingsSnapshot) -> CompiledExpression:
    """
    Compile expression text against a bindings snapshot.

    Args:
        source: Expression text
        bindings: Snapshot from VariableBindings.snapshot_for_compilation()

    Returns:
        CompiledExpression ready to evaluate

    Raises:
        CompileError: syntax error, unsupported construct or unknown symbol
    """
    if source is None or not source.strip():
        raise CompileError("Empty expression", source or "")

    try:
        text = _rewrite_if_calls(source.strip())
        tree = ast.parse(text)
        if len(tree.body) != 1 or not isinstance(tree.body[0], ast.Expr):
            raise CompileError("Expected a single expression", source)

        node = ast.fix_missing_locations(_IfCallToConditional(source).visit(tree.body[0]))
        _check_tree(node, bindings, source)
    except SyntaxError as e:
        raise CompileError(f"Syntax error: {e.msg} at offset {e.offset}", source) from e
    except (RecursionError, MemoryError) as e:
        raise CompileError("Expression too deeply nested", source) from e

    return CompiledExpression(source.strip(), node, bindings)


def is_triggered(value: float) -> bool:
    """A rule triggers only when its expression evaluates to exactly 1."""
    return value == 1.0
