#!/usr/bin/env python3
"""
fpsimp command-line interface.

Usage:
    fpsimp                                   # Serve JSON requests on stdin/stdout
    fpsimp -r rules.json                     # Serve with rewrites preloaded
    fpsimp -r rules.json -e "(+ x 0)"        # One-shot simplification
    fpsimp -r rules.json -e "(* 2 3)" --no-constant-fold

Rules files hold a JSON list of {"name", "lhs", "rhs"} objects, or an
object with that list under "rewrites".

Environment variables FPSIMP_NODE_LIMIT, FPSIMP_ITER_LIMIT,
FPSIMP_LOG_LEVEL and FPSIMP_LOG_FORMAT set defaults for the matching flags.
"""

import argparse
import sys
from typing import List, Optional

import structlog
from pydantic import ValidationError

from . import __version__
from .config import load_settings
from .errors import FpsimpError
from .language import format_expr
from .log import setup_logging
from .protocol import serve
from .session import Session

logger = structlog.get_logger()


def run_expressions(session: Session, exprs: List[str], constant_fold: bool = True) -> int:
    """
    Simplify expressions and print one summary line each.

    Returns:
        Exit code (0 for success)
    """
    try:
        result = session.simplify(exprs, constant_fold=constant_fold)
    except (FpsimpError, RecursionError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    for cmp in result.best:
        print(f"{format_expr(cmp.initial_expr)} [{cmp.initial_cost}]"
              f" => {format_expr(cmp.final_expr)} [{cmp.final_cost}]")
    print(f"stopped: {result.stop_reason} after {len(result.iterations)} iteration(s)",
          file=sys.stderr)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fpsimp",
        description="fpsimp - exact constant folding and equality saturation "
                    "for floating-point expressions",
        epilog="Examples:\n"
               "  fpsimp                               Serve JSON requests\n"
               "  fpsimp -r rules.json                 Serve with rewrites loaded\n"
               "  fpsimp -r rules.json -e '(+ x 0)'    Simplify one expression\n",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument(
        "-r", "--rewrites",
        action="append",
        default=[],
        help="Load rewrites from a JSON file (later files replace earlier ones)"
    )

    parser.add_argument(
        "-e", "--expr",
        action="append",
        default=[],
        help="Simplify an expression and exit (can be specified multiple times)"
    )

    parser.add_argument(
        "--no-constant-fold",
        action="store_true",
        help="Disable exact constant folding for -e"
    )

    parser.add_argument(
        "--node-limit",
        type=int,
        help="E-graph node ceiling per run (default 10000)"
    )

    parser.add_argument(
        "--iter-limit",
        type=int,
        help="Iteration ceiling per run (default 30)"
    )

    parser.add_argument(
        "--log-level",
        help="Log level for stderr logging (default WARNING)"
    )

    parser.add_argument(
        "--log-format",
        choices=["console", "json"],
        help="Log output format"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(
            node_limit=args.node_limit,
            iter_limit=args.iter_limit,
            log_level=args.log_level,
            log_format=args.log_format,
        )
    except ValidationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    setup_logging(settings.log_level, settings.log_format)
    session = Session(node_limit=settings.node_limit, iter_limit=settings.iter_limit)

    for path in args.rewrites:
        try:
            n = session.load_rewrites_file(path)
        except (OSError, ValueError, FpsimpError) as e:
            print(f"Error loading {path}: {e}", file=sys.stderr)
            return 1
        logger.info("cli.rewrites_file_loaded", path=path, n=n)

    if args.expr:
        return run_expressions(session, args.expr, constant_fold=not args.no_constant_fold)

    serve(session, sys.stdin, sys.stdout)
    return 0


if __name__ == "__main__":
    sys.exit(main())
