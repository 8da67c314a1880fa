"""
fpsimp - exact constant folding and equality saturation for FP expressions

Simplifies expressions written in the FPCore operator language by
saturating them with caller-supplied rewrites in an e-graph, folding
rational constant subexpressions exactly along the way, and reporting the
smallest equivalent form of each expression.

Quick Start:
    from fpsimp import Session

    session = Session()
    session.load_rewrites([
        {"name": "mul-one", "lhs": "(* ?a 1)", "rhs": "?a"},
        {"name": "comm-mul", "lhs": "(* ?a ?b)", "rhs": "(* ?b ?a)"},
    ])
    result = session.simplify(["(* 1 (+ x (/ 6 4)))"])
    result.best[0].to_dict()
    # => {"initial_expr": "(* 1 (+ x 3/2))", "initial_cost": 5,
    #     "final_expr": "(+ x 3/2)", "final_cost": 3}

Expression Syntax:
    (+ x 1)           - operator application, fixed arity per operator
    3, -1/2, 0.25     - exact rational constants
    PI, E, TRUE       - named constants
    x, y              - variables
    ?a                - pattern variable (rewrite patterns only)
"""

__version__ = "0.1.0"

# Term grammar
from .language import (
    ExprType,
    ENode,
    OPERATORS,
    CONSTANT,
    VARIABLE,
    parse_expr,
    parse_pattern,
    format_expr,
)

# Errors
from .errors import FpsimpError, ParseError, RewriteError, NoRulesLoaded

# Analysis, engine and extraction
from .constant_fold import ConstantFold
from .egraph import EGraph, EClass, Rewrite, Runner, Iteration, StopReason
from .extract import AstSize, Extractor, ast_size

# Session and protocol
from .session import Session, Comparison, SimplifyResult

# Public API
__all__ = [
    # Version
    "__version__",
    # Grammar
    "ExprType",
    "ENode",
    "OPERATORS",
    "CONSTANT",
    "VARIABLE",
    "parse_expr",
    "parse_pattern",
    "format_expr",
    # Errors
    "FpsimpError",
    "ParseError",
    "RewriteError",
    "NoRulesLoaded",
    # Analysis
    "ConstantFold",
    # Engine
    "EGraph",
    "EClass",
    "Rewrite",
    "Runner",
    "Iteration",
    "StopReason",
    # Extraction
    "AstSize",
    "Extractor",
    "ast_size",
    # Session
    "Session",
    "Comparison",
    "SimplifyResult",
]
