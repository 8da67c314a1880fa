"""
Term grammar for fpsimp.

Expressions and rewrite patterns are written as S-expressions over a fixed
set of operators (the FPCore operators plus complex and posit variants):

    (+ x 1)
    (sqrt (/ 4 9))
    (if (< x 0) (neg x) x)

Every operator has a fixed arity. Atoms are exact numerals (3, -7, 1/3,
0.25), nullary constant tokens (PI, E, ...), variables (any other symbol)
and, in patterns only, pattern variables (?x).

In memory an expression is a nested list in the same shape as the text:

    "(+ x (* 2 y))" -> ["+", "x", ["*", Fraction(2), "y"]]

Constants are fractions.Fraction, variables and nullary tokens are str, and
a pattern variable ?x is the two element list ["?", "x"].
"""

import re
from fractions import Fraction
from typing import Callable, Dict, Iterable, List, NamedTuple, Tuple, Union

from .errors import ParseError

# Type aliases
ExprType = Union[Fraction, str, List]
ClassId = int

# Pseudo-operators for the two kinds of payload-carrying leaves
CONSTANT = "#constant"
VARIABLE = "#variable"


# ============================================================
# Operator Table
# ============================================================

NULLARY_OPS = (
    # boolean and special floating point constants
    "TRUE", "FALSE", "INFINITY", "NAN",
    # named mathematical constants
    "E", "LOG2E", "LOG10E", "LN2", "LN10",
    "PI", "PI_2", "PI_4", "1_PI", "2_PI", "2_SQRTPI",
    "SQRT2", "SQRT1_2",
)

UNARY_OPS = (
    # logical
    "not",
    # complex
    "re", "im", "conj", "neg.c",
    # real functions
    "neg", "fabs", "sqrt", "cbrt",
    "exp", "exp2", "expm1", "log", "log10", "log2", "log1p",
    "sin", "cos", "tan", "asin", "acos", "atan",
    "sinh", "cosh", "tanh", "asinh", "acosh", "atanh",
    "erf", "erfc", "tgamma", "lgamma",
    "ceil", "floor", "trunc", "round", "nearbyint",
    # posit
    "real->posit",
)

BINARY_OPS = (
    # logical
    "and", "or",
    # comparison
    "<", ">", "<=", ">=",
    # complex
    "complex", "+.c", "-.c", "*.c", "/.c",
    # real functions
    "+", "-", "*", "/", "pow", "atan2", "hypot", "copysign",
    "fmod", "remainder", "fmax", "fmin", "fdim",
    # posit
    "+.p16", "-.p16", "*.p16", "/.p16",
)

TERNARY_OPS = ("if", "fma")

OPERATORS: Dict[str, int] = {
    **{op: 0 for op in NULLARY_OPS},
    **{op: 1 for op in UNARY_OPS},
    **{op: 2 for op in BINARY_OPS},
    **{op: 3 for op in TERNARY_OPS},
}

# Tokens that must be read as exact numerals
_NUMERAL_RE = re.compile(r"^[+-]?\.?\d")
_TOKEN_RE = re.compile(r"\(|\)|[^\s()]+")

# Deepest parenthesis nesting accepted by the parser
MAX_DEPTH = 200


def arity(op: str) -> int:
    """Number of children an operator takes (0 for leaves)."""
    if op in (CONSTANT, VARIABLE):
        return 0
    return OPERATORS[op]


# ============================================================
# E-Nodes
# ============================================================

class ENode(NamedTuple):
    """
    A single operator application whose children are e-class ids.

    Leaves carry their value in payload: a Fraction for CONSTANT, the
    variable name for VARIABLE. Nullary constant tokens (PI, TRUE, ...)
    have neither children nor payload.
    """

    op: str
    children: Tuple[ClassId, ...] = ()
    payload: Union[Fraction, str, None] = None

    def is_leaf(self) -> bool:
        return not self.children

    def map_children(self, f: Callable[[ClassId], ClassId]) -> "ENode":
        if not self.children:
            return self
        return self._replace(children=tuple(f(c) for c in self.children))

    def __str__(self) -> str:
        if self.op == CONSTANT or self.op == VARIABLE:
            return str(self.payload)
        if not self.children:
            return self.op
        return "(" + " ".join([self.op] + [str(c) for c in self.children]) + ")"


def to_enode(expr: ExprType, child_ids: Iterable[ClassId] = ()) -> ENode:
    """
    Build the e-node for the root of expr, given the ids of its children.

    Args:
        expr: A (non-pattern) expression
        child_ids: Class ids for expr's children, in order

    Returns:
        The e-node for expr's root operator
    """
    if constant(expr):
        return ENode(CONSTANT, (), expr)
    if isinstance(expr, str):
        if expr in OPERATORS:
            return ENode(expr)
        return ENode(VARIABLE, (), expr)
    return ENode(expr[0], tuple(child_ids))


def from_enode(node: ENode, child_exprs: List[ExprType]) -> ExprType:
    """Inverse of to_enode: rebuild an expression from a node and its children."""
    if node.op == CONSTANT or node.op == VARIABLE:
        return node.payload
    if not node.children:
        return node.op
    return [node.op] + list(child_exprs)


# ============================================================
# Expression Predicates
# ============================================================

def constant(exp: ExprType) -> bool:
    """Check if an expression is an exact constant."""
    return isinstance(exp, Fraction)


def variable(exp: ExprType) -> bool:
    """Check if an expression is a variable (not a nullary constant token)."""
    return isinstance(exp, str) and exp not in OPERATORS


def pattern_var(exp: ExprType) -> bool:
    """Check if an expression is a pattern variable ["?", name]."""
    return isinstance(exp, list) and len(exp) == 2 and exp[0] == "?"


def children(exp: ExprType) -> List[ExprType]:
    """Children of an operator application; atoms have none."""
    if isinstance(exp, list) and not pattern_var(exp):
        return exp[1:]
    return []


def pattern_vars(pat: ExprType) -> List[str]:
    """Names of the pattern variables in pat, in first-occurrence order."""
    found: List[str] = []

    def walk(p):
        if pattern_var(p):
            if p[1] not in found:
                found.append(p[1])
            return
        for c in children(p):
            walk(c)

    walk(pat)
    return found


# ============================================================
# Parsing
# ============================================================

def parse_numeral(token: str) -> Fraction:
    """
    Read an exact numeral.

    Examples:
        "3" -> Fraction(3)
        "-1/3" -> Fraction(-1, 3)
        "0.25" -> Fraction(1, 4)

    Raises:
        ParseError: If the token is not a well-formed exact numeral
    """
    try:
        return Fraction(token)
    except (ValueError, ZeroDivisionError):
        raise ParseError(f"Malformed numeral '{token}'", token) from None


def parse_sexpr(text: str) -> Union[str, List]:
    """
    Read S-expression structure without interpreting atoms.

    Examples:
        "(+ x 1)" -> ["+", "x", "1"]

    Raises:
        ParseError: On empty input, unbalanced parentheses, trailing input
            or nesting deeper than MAX_DEPTH
    """
    tokens = _TOKEN_RE.findall(text)
    if not tokens:
        raise ParseError("Empty expression", text)

    expr, pos = _read(tokens, 0, text)
    if pos != len(tokens):
        rest = " ".join(tokens[pos:])
        raise ParseError(f"Unexpected trailing input '{rest}'", text)
    return expr


def _read(
    tokens: List[str], pos: int, text: str, depth: int = 0
) -> Tuple[Union[str, List], int]:
    token = tokens[pos]
    if token == ")":
        raise ParseError("Unexpected ')'", text)
    if token != "(":
        return token, pos + 1
    if depth >= MAX_DEPTH:
        raise ParseError(f"Expression nested more than {MAX_DEPTH} levels deep", text)

    items: List = []
    pos += 1
    while True:
        if pos >= len(tokens):
            raise ParseError("Unbalanced parentheses: missing ')'", text)
        if tokens[pos] == ")":
            return items, pos + 1
        item, pos = _read(tokens, pos, text, depth + 1)
        items.append(item)


def _build(raw: Union[str, List], patterns: bool) -> ExprType:
    if not isinstance(raw, list):
        return _atom(raw, patterns)

    if not raw:
        raise ParseError("Empty application '()'", "()")
    head = raw[0]
    if isinstance(head, list):
        raise ParseError("Operator position must hold a symbol", format_sexpr(head))
    if head not in OPERATORS:
        raise ParseError(f"Unknown operator '{head}'", head)

    args = raw[1:]
    expected = OPERATORS[head]
    if len(args) != expected:
        raise ParseError(
            f"Operator '{head}' expects {expected} argument(s), got {len(args)}",
            format_sexpr(raw),
        )
    if expected == 0:
        # (PI) is accepted as a spelling of PI
        return head
    return [head] + [_build(arg, patterns) for arg in args]


def _atom(token: str, patterns: bool) -> ExprType:
    if token.startswith("?"):
        if not patterns:
            raise ParseError(f"Pattern variable '{token}' is not allowed here", token)
        if len(token) == 1:
            raise ParseError("Pattern variable needs a name", token)
        return ["?", token[1:]]

    if token in OPERATORS:
        expected = OPERATORS[token]
        if expected != 0:
            raise ParseError(
                f"Operator '{token}' expects {expected} argument(s), got 0", token
            )
        return token

    if _NUMERAL_RE.match(token):
        return parse_numeral(token)

    return token


def parse_expr(text: str) -> ExprType:
    """
    Parse an expression.

    Examples:
        parse_expr("(+ 1 x)") -> ["+", Fraction(1), "x"]
        parse_expr("PI") -> "PI"

    Raises:
        ParseError: On any malformed input
    """
    return _build(parse_sexpr(text), patterns=False)


def parse_pattern(text: str) -> ExprType:
    """
    Parse a rewrite pattern; like parse_expr but ?name is a pattern variable.

    Example:
        parse_pattern("(+ ?a 0)") -> ["+", ["?", "a"], Fraction(0)]
    """
    return _build(parse_sexpr(text), patterns=True)


# ============================================================
# Printing
# ============================================================

def format_sexpr(expr: Union[str, List]) -> str:
    """Format raw S-expression structure (as returned by parse_sexpr)."""
    if isinstance(expr, list):
        return "(" + " ".join(format_sexpr(e) for e in expr) + ")"
    return str(expr)


def format_expr(expr: ExprType) -> str:
    """
    Format an expression or pattern as S-expression text.

    Examples:
        ["+", Fraction(1, 2), "x"] -> "(+ 1/2 x)"
        ["+", ["?", "a"], Fraction(0)] -> "(+ ?a 0)"
    """
    if pattern_var(expr):
        return f"?{expr[1]}"
    if isinstance(expr, list):
        return "(" + " ".join(format_expr(e) for e in expr) + ")"
    return str(expr)
