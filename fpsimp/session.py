"""
Session state and the simplify operation.

A Session owns the installed rewrite rules, the only state that survives
from one request to the next. Every simplify() call builds a private
e-graph, seeds it with the input expressions, records the cheapest form
of each before and after saturation, and throws the e-graph away.

Example:
    session = Session()
    session.load_rewrites([{"name": "mul-one", "lhs": "(* ?a 1)", "rhs": "?a"}])
    result = session.simplify(["(* x 1)"])
    result.best[0].final_expr  # => "x"
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import structlog

from .constant_fold import ConstantFold
from .egraph import Iteration, Rewrite, Runner, StopReason
from .errors import NoRulesLoaded, RewriteError
from .extract import Extractor
from .language import ExprType, format_expr, parse_expr

logger = structlog.get_logger()


@dataclass(frozen=True)
class Comparison:
    """Cheapest form of one input expression before and after rewriting."""

    initial_expr: ExprType
    initial_cost: int
    final_expr: ExprType
    final_cost: int

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a dictionary, rendering expressions as text."""
        return {
            "initial_expr": format_expr(self.initial_expr),
            "initial_cost": self.initial_cost,
            "final_expr": format_expr(self.final_expr),
            "final_cost": self.final_cost,
        }


@dataclass(frozen=True)
class SimplifyResult:
    iterations: List[Iteration] = field(default_factory=list)
    best: List[Comparison] = field(default_factory=list)
    stop_reason: Optional[StopReason] = None


def _rule_field(rule: Any, key: str) -> str:
    if isinstance(rule, Mapping):
        value = rule.get(key)
    else:
        value = getattr(rule, key, None)
    if not isinstance(value, str):
        raise RewriteError(f"Rewrite is missing a string '{key}' field")
    return value


class Session:
    """
    Holds the installed rewrites across requests.

    Args:
        node_limit: E-graph node ceiling for each simplify() run
        iter_limit: Iteration ceiling for each simplify() run
    """

    def __init__(self, node_limit: int = 10_000, iter_limit: int = 30):
        self.node_limit = node_limit
        self.iter_limit = iter_limit
        self._rewrites: Tuple[Rewrite, ...] = ()

    def __len__(self) -> int:
        return len(self._rewrites)

    @property
    def rewrites(self) -> Tuple[Rewrite, ...]:
        return self._rewrites

    def load_rewrites(self, rules: Iterable[Union[Mapping[str, str], Any]]) -> int:
        """
        Replace the installed rewrites.

        Each rule is a mapping (or object) with name, lhs and rhs text.
        All rules are validated before any is installed, so on error the
        previous rule set stays in place.

        Returns:
            Number of rewrites installed

        Raises:
            ParseError: If a pattern cannot be parsed
            RewriteError: If a rule is incomplete or uses unbound variables
        """
        staged = tuple(
            Rewrite.from_text(
                _rule_field(rule, "name"),
                _rule_field(rule, "lhs"),
                _rule_field(rule, "rhs"),
            )
            for rule in rules
        )
        self._rewrites = staged
        logger.info("session.rewrites_loaded", n=len(staged))
        return len(staged)

    def load_rewrites_file(self, path: Union[str, Path]) -> int:
        """
        Load rewrites from a JSON file.

        The file holds either a list of {"name", "lhs", "rhs"} objects or
        an object with such a list under "rewrites".
        """
        data = json.loads(Path(path).read_text())
        if isinstance(data, Mapping):
            data = data.get("rewrites", [])
        if not isinstance(data, list):
            raise RewriteError(f"{path}: expected a list of rewrites")
        return self.load_rewrites(data)

    def simplify(self, exprs: Iterable[str], constant_fold: bool = True) -> SimplifyResult:
        """
        Saturate the expressions with the installed rewrites.

        Args:
            exprs: Expression texts
            constant_fold: Enable exact constant folding

        Returns:
            Iteration records and one Comparison per expression, in input order

        Raises:
            NoRulesLoaded: If no rewrites are installed
            ParseError: If any expression cannot be parsed (nothing is run)
        """
        rewrites = self._rewrites
        if not rewrites:
            raise NoRulesLoaded()

        parsed = [parse_expr(text) for text in exprs]

        analysis = ConstantFold(constant_fold=constant_fold, prune=True)
        runner = Runner(analysis, node_limit=self.node_limit, iter_limit=self.iter_limit)
        for expr in parsed:
            runner.with_expr(expr)
        runner.egraph.rebuild()

        extractor = Extractor(runner.egraph)
        initial = [extractor.find_best(root) for root in runner.roots]

        runner.run(rewrites)

        extractor = Extractor(runner.egraph)
        best = []
        for root, (initial_cost, initial_expr) in zip(runner.roots, initial):
            final_cost, final_expr = extractor.find_best(root)
            best.append(Comparison(initial_expr, initial_cost, final_expr, final_cost))

        logger.info(
            "session.simplified",
            exprs=len(parsed),
            iterations=len(runner.iterations),
            stop_reason=str(runner.stop_reason),
        )
        return SimplifyResult(runner.iterations, best, runner.stop_reason)
