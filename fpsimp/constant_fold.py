"""
Constant-folding analysis over exact rationals.

Every e-class carries Optional[Fraction]: None when the class's value is
not statically known, otherwise the exact value it is proven equal to.
The e-graph calls back into the analysis at three points:

    make(egraph, enode)        value of a freshly created node
    merge(existing, incoming)  combine two classes' values on union
    modify(egraph, class_id)   react once a class's value is known

Folding is limited to operations that are closed over the rationals;
everything else (transcendentals, comparisons, complex and posit
operators, irrational roots, fractional powers) stays unknown.
"""

import math
import operator
from fractions import Fraction
from typing import Callable, Dict, Optional, Tuple

import structlog

from .language import CONSTANT, ENode

logger = structlog.get_logger()

# Fold handler: receives exact operand values, returns the result or None (can't fold)
FoldHandler = Callable[..., Optional[Fraction]]


# ============================================================
# Exact Operations
# ============================================================

def safe_div(a: Fraction, b: Fraction) -> Optional[Fraction]:
    """
    Division that refuses a zero numerator or a zero divisor.

    0/b is left unknown so that folding never asserts
    anything about (/ 0 0).
    """
    if a == 0 or b == 0:
        return None
    return a / b


def exact_pow(a: Fraction, b: Fraction) -> Optional[Fraction]:
    """Raise a to a non-negative integer power; anything else is unknown."""
    if b.denominator != 1 or b.numerator < 0:
        return None
    e = b.numerator
    return Fraction(a.numerator ** e, a.denominator ** e)


def exact_sqrt(a: Fraction) -> Optional[Fraction]:
    """
    Square root of a positive rational whose numerator and denominator
    are both perfect squares.

    Examples:
        exact_sqrt(Fraction(4, 9)) -> Fraction(2, 3)
        exact_sqrt(Fraction(2)) -> None
    """
    if a <= 0:
        return None
    top = math.isqrt(a.numerator)
    bot = math.isqrt(a.denominator)
    if top * top != a.numerator or bot * bot != a.denominator:
        return None
    return Fraction(top, bot)


def round_half_away(a: Fraction) -> Fraction:
    """Round to the nearest integer, halfway cases away from zero."""
    magnitude = math.floor(abs(a) + Fraction(1, 2))
    return Fraction(magnitude if a >= 0 else -magnitude)


FOLDERS: Dict[str, FoldHandler] = {
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
    "/": safe_div,
    "neg": operator.neg,
    "pow": exact_pow,
    "sqrt": exact_sqrt,
    "fabs": abs,
    "floor": lambda a: Fraction(math.floor(a)),
    "ceil": lambda a: Fraction(math.ceil(a)),
    "round": round_half_away,
}


# ============================================================
# Analysis
# ============================================================

class ConstantFold:
    """
    E-graph analysis that folds constant subexpressions exactly.

    Args:
        constant_fold: When False every make() result is None
        prune: When True, once a class's value is known all of its
            non-leaf members are dropped
    """

    def __init__(self, constant_fold: bool = True, prune: bool = True):
        self.constant_fold = constant_fold
        self.prune = prune

    def __repr__(self) -> str:
        return f"ConstantFold(constant_fold={self.constant_fold}, prune={self.prune})"

    def make(self, egraph, enode: ENode) -> Optional[Fraction]:
        """Derive a node's value from its children's values, if possible."""
        if not self.constant_fold:
            return None
        if enode.op == CONSTANT:
            return enode.payload

        handler = FOLDERS.get(enode.op)
        if handler is None:
            return None
        args = [egraph[child].data for child in enode.children]
        if any(arg is None for arg in args):
            return None
        return handler(*args)

    def merge(
        self, existing: Optional[Fraction], incoming: Optional[Fraction]
    ) -> Tuple[Optional[Fraction], bool]:
        """
        Combine the data of two classes being unified.

        Returns:
            (merged value, whether the existing value changed)
        """
        if existing is None:
            if incoming is None:
                return None, False
            return incoming, True

        if incoming is not None and incoming != existing:
            # Only reachable through an unsound rewrite
            logger.warning(
                "constant_fold.inconsistent_merge",
                kept=str(existing),
                dropped=str(incoming),
            )
        return existing, False

    def modify(self, egraph, class_id: int) -> None:
        """Add the known value as a constant member of the class, then prune."""
        value = egraph[class_id].data
        if value is None:
            return

        added = egraph.add(ENode(CONSTANT, (), value))
        class_id, _ = egraph.union(class_id, added)
        if self.prune:
            eclass = egraph[class_id]
            eclass.nodes = [node for node in eclass.nodes if node.is_leaf()]
